"""
cgmctl set-password - Keep the LibreLink password in the system keychain.

Usage:
    cgmctl set-password
    cgmctl set-password --keep-config
"""

import click
from keyring.errors import KeyringError

from ..core.logging import mask_email
from ..core.secrets import EXTENSION_ID, SERVICE_NAME, KeyringSecretStore
from ..utils.output import console, handle_error
from .utils import load_context_config


@click.command("set-password")
@click.password_option("--password", help="LibreLink password (prompted when omitted)")
@click.option("--keep-config", is_flag=True,
              help="Leave any password already written in config.yaml")
@click.pass_context
def set_password(ctx: click.Context, password: str, keep_config: bool) -> None:
    """Store the LibreLink Up password in the system keychain.

    The password is saved for librelink.email from the config. Unless
    --keep-config is given, a plain password in config.yaml is removed
    so the keychain copy is the one used.
    """
    config = load_context_config(ctx)
    email = (config.get("librelink") or {}).get("email")
    if not email:
        raise click.UsageError("librelink.email is not set in the config")

    try:
        KeyringSecretStore().store(SERVICE_NAME, EXTENSION_ID, email, password)
    except KeyringError as e:
        ctx.exit(handle_error(e, ctx.obj.get("json_errors", False), {"command": "set-password"}))

    if not keep_config and config.get("librelink.password"):
        config.set("librelink.password", "")
    console.print(f"[green]✓ Password stored in keychain for {mask_email(email)}[/green]")
