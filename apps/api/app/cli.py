"""CLI tools for messaging administration and local bootstrap."""

import os

import click

from app.db.enums import MembershipRole, Role
from app.db.models import Group, GroupMembership, Organization, User
from app.db.session import SessionLocal


@click.group()
def cli():
    """Messaging CLI tools."""
    pass


@cli.command()
def init_db():
    """
    Create every table on the configured database.

    Example:
        python -m app.cli init-db
    """
    from app.db.base import Base
    from app.db.session import engine

    Base.metadata.create_all(engine)
    click.echo(f"✓ Schema created on {engine.url.render_as_string(hide_password=True)}")


@cli.command()
@click.option("--name", required=True, help="Organization name")
def create_org(name: str):
    """
    Create an organization.

    Example:
        python -m app.cli create-org --name "Acme Staffing"
    """
    db = SessionLocal()
    try:
        name = name.strip()
        if db.query(Organization).filter(Organization.name == name).first():
            click.echo(f"❌ Organization '{name}' already exists")
            raise SystemExit(1)

        org = Organization(name=name)
        db.add(org)
        db.commit()

        click.echo(f"✓ Created organization: {name}")
        click.echo(f"  ID: {org.id}")
    except SystemExit:
        raise
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="Login email")
@click.option("--name", default=None, help="Display name")
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.WORKER.value,
    show_default=True,
)
@click.option("--locale", default="ja", show_default=True, help="Preferred language (ja, vi, en, ...)")
def create_user(email: str, name: str | None, role: str, locale: str):
    """
    Create a user with a global role.

    Example:
        python -m app.cli create-user --email "nguyen@example.com" --role WORKER --locale vi
    """
    db = SessionLocal()
    try:
        email = email.lower().strip()
        if db.query(User).filter(User.email == email).first():
            click.echo(f"❌ User already exists: {email}")
            raise SystemExit(1)

        user = User(email=email, name=name, role=role, locale=locale)
        db.add(user)
        db.commit()

        click.echo(f"✓ Created {role} {email}")
        click.echo(f"  ID: {user.id}")
    except SystemExit:
        raise
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="Member email")
@click.option("--group-id", required=True, help="Group ID")
@click.option(
    "--role",
    type=click.Choice([r.value for r in MembershipRole]),
    default=MembershipRole.MEMBER.value,
    show_default=True,
)
def add_member(email: str, group_id: str, role: str):
    """
    Add a user to a group.

    Example:
        python -m app.cli add-member --email "nguyen@example.com" --group-id <uuid>
    """
    import uuid

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower().strip()).first()
        if not user:
            click.echo(f"❌ User not found: {email}")
            raise SystemExit(1)
        group = db.get(Group, uuid.UUID(group_id))
        if not group or group.is_deleted:
            click.echo(f"❌ Group not found: {group_id}")
            raise SystemExit(1)

        existing = (
            db.query(GroupMembership)
            .filter(GroupMembership.group_id == group.id, GroupMembership.user_id == user.id)
            .first()
        )
        if existing:
            existing.role = role
        else:
            db.add(GroupMembership(group_id=group.id, user_id=user.id, role=role))
        db.commit()

        click.echo(f"✓ {email} is now {role} of {group.name}")
    except SystemExit:
        raise
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command()
@click.option("--host", default=lambda: os.getenv("HOST", "127.0.0.1"), show_default="HOST or 127.0.0.1")
@click.option("--port", default=lambda: int(os.getenv("PORT", "8000")), type=int, show_default="PORT or 8000")
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
def serve(host: str, port: int, reload: bool):
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("app.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
