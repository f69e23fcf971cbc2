from __future__ import annotations

import json
from pathlib import Path

import click
from flask import Flask

from central_aprovacao.contexts.erp.infrastructure.tenant_repository import (
    list_tenant_rows,
    parse_tenants_config,
    upsert_tenant,
)
from central_aprovacao.db import get_db, init_db


def register_tenant_cli(app: Flask) -> None:
    @app.cli.group("tenants")
    def tenants_group() -> None:
        """Cadastro dos ERPs por pais."""

    @tenants_group.command("load")
    @click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
    def tenants_load(source: Path) -> None:
        try:
            tenants = parse_tenants_config(source.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
        init_db()
        db = get_db()
        for tenant in tenants:
            upsert_tenant(db, tenant)
        click.echo(f"{len(tenants)} tenant(s) gravado(s).")

    @tenants_group.command("list")
    @click.option("--json", "as_json", is_flag=True, help="Saida em JSON.")
    def tenants_list(as_json: bool) -> None:
        rows = list_tenant_rows(get_db())
        for row in rows:
            row.pop("password", None)
        if as_json:
            click.echo(json.dumps(rows, ensure_ascii=True, default=str))
            return
        for row in rows:
            flags = []
            if row.get("is_default"):
                flags.append("padrao")
            if not row.get("is_active"):
                flags.append("inativo")
            suffix = f" ({', '.join(flags)})" if flags else ""
            click.echo(f"{row['tenant_id']}\t{row.get('erp')}\t{row.get('base_url')}{suffix}")
