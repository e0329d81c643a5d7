import json

import typer

from typer import Option

from core.exceptions import EntityEngineError
from core.logging_config import setup_logging
from schemas.scope import Scope

app = typer.Typer(help="Entity engine maintenance commands")


def _dump(data) -> None:
    print(json.dumps(data, indent=2, default=str))


@app.callback()
def main(log_level: str = Option(None, "--log-level")):
    setup_logging(log_level=log_level)


@app.command()
def init_db():
    """Create the metadata tables (entity_templates, entity_fields, migrations)"""
    from models import Base
    from services.factories import build_entity_engine

    engine = build_entity_engine()
    with engine.session() as db:
        bind = db.get_bind()
        Base.metadata.create_all(bind=bind)
    typer.echo(f"Metadata tables ready on {bind.url.render_as_string(hide_password=True)}")


@app.command()
def field_types():
    """List the registered field types"""
    from services.field_types import build_default_registry
    from core.settings import settings

    _dump(build_default_registry(settings.PASSWORD_HASH_SCHEMES).describe())


@app.command()
def templates(
    tenant_id: str = Option(..., "--tenant-id"),
    project_id: str = Option(..., "--project-id"),
    active_only: bool = Option(False, "--active-only"),
):
    """List the templates of a tenant/project"""
    from services.factories import build_entity_engine

    engine = build_entity_engine()
    with engine.session() as db:
        _dump(engine.templates(db).list_templates(Scope(tenant_id=tenant_id, project_id=project_id), active_only))


@app.command()
def describe(template_id: str = typer.Argument(...)):
    """Show a template with its fields and applied migrations"""
    from services.factories import build_entity_engine

    engine = build_entity_engine()
    with engine.session() as db:
        service = engine.templates(db)
        try:
            template = service.get_template(template_id)
            template["migrations"] = service.migration_history(template_id)
        except EntityEngineError as e:
            typer.echo(json.dumps(e.to_dict()), err=True)
            raise typer.Exit(code=1)
        _dump(template)


if __name__ == "__main__":
    app()
