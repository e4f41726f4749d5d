"""CLI entry point for lockbox."""

import json
import shlex
import sys
import warnings
from pathlib import Path

import click
import yaml

from lockbox import __version__
from lockbox.backends.age import AgeBackend
from lockbox.backends.sops import SopsBackend
from lockbox.config import ToolConfig, get_age_key_path, get_secrets_path
from lockbox.console import error, info, success, warn
from lockbox.envelope import EnvelopeFormat, detect_format
from lockbox.exceptions import BackendError, BackendUnavailableError, LockboxError
from lockbox.files import decrypt_file, encrypt_file
from lockbox.store import SecretStore


def fail(e: Exception) -> None:
    """Report an error and exit with status 1."""
    error(str(e))
    if isinstance(e, BackendError) and e.stderr:
        click.echo(e.stderr, err=True)
    sys.exit(1)


def default_identity(identity, project):
    if identity:
        return identity
    key_path = get_age_key_path(project)
    return str(key_path) if key_path.exists() else None


def parse_assignments(assignments):
    secrets = {}
    for item in assignments:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {item!r}", param_hint="SECRETS")
        secrets[name] = value
    return secrets


@click.group()
@click.version_option(version=__version__, prog_name="lockbox")
@click.pass_context
def main(ctx):
    """lockbox - file encryption and secret stores backed by age and sops."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = ToolConfig.from_env()


@main.command()
@click.pass_context
def check(ctx):
    """Check if age, age-keygen and sops are installed."""
    config = ctx.obj["config"]
    info("Checking dependencies...")

    missing = []
    for tool, probe in (
        (config.age, AgeBackend(config).version),
        (config.age_keygen, AgeBackend(config).keygen_version),
        (config.sops, SopsBackend(config).version),
    ):
        try:
            click.echo(f"  {tool}: {probe()}", err=True)
        except (BackendUnavailableError, BackendError):
            missing.append(tool)

    if missing:
        error(f"Missing required tools: {', '.join(missing)}")
        click.echo("\nInstall with:", err=True)
        for tool in missing:
            click.echo(f"  brew install {tool}", err=True)
        sys.exit(1)

    info("All dependencies are installed.")


@main.command()
@click.option("--project", help="Project subdirectory (creates if doesn't exist)")
@click.option("--sops", "use_sops", is_flag=True, default=False, help="Create a sops-format envelope")
@click.pass_context
def setup(ctx, project, use_sops):
    """Generate an age key and an empty envelope for it."""
    config = ctx.obj["config"]
    age = AgeBackend(config)
    key_file = get_age_key_path(project)
    lockbox_file = get_secrets_path(project)
    key_file.parent.mkdir(parents=True, exist_ok=True)

    try:
        if key_file.exists():
            info(f"Age key already exists: {key_file}")
            public_key = age.public_key(key_file)
        else:
            info("Generating new age key...")
            public_key = age.generate_identity(key_file).public
            info(f"Age key generated: {key_file}")
            warn("IMPORTANT: Store this key securely and add to your password manager!")

        if lockbox_file.exists():
            info(f"Envelope already exists: {lockbox_file}")
        else:
            fmt = EnvelopeFormat.SOPS if use_sops else EnvelopeFormat.CUSTOM
            SecretStore(age=age, sops=SopsBackend(config)).put(lockbox_file, {}, recipients=[public_key], fmt=fmt)
            info(f"Created envelope: {lockbox_file}")
    except LockboxError as e:
        fail(e)

    click.echo(f"\nPublic key:\n{public_key}\n", err=True)
    project_suffix = f" --project {project}" if project else ""
    click.echo("Next steps:", err=True)
    click.echo("  1. Backup your age key to a secure location", err=True)
    click.echo(f"  2. Add secrets with: lockbox secrets encrypt NAME=VALUE{project_suffix}", err=True)
    click.echo(f"  3. Decrypt secrets with: lockbox secrets decrypt{project_suffix}", err=True)


@main.group()
def key():
    """Generate and inspect age keys."""
    pass


@key.command(name="generate")
@click.option("--keyfile", type=click.Path(dir_okay=False), help="Save the private key to this file")
@click.pass_context
def key_generate(ctx, keyfile):
    """Generate a new age key pair."""
    try:
        pair = AgeBackend(ctx.obj["config"]).generate_identity(keyfile)
    except (FileExistsError, LockboxError) as e:
        fail(e)

    if keyfile:
        info(f"Age key generated: {keyfile}")
        click.echo(pair.public)
    else:
        click.echo(f"# created: {pair.created.isoformat()}")
        click.echo(f"# public key: {pair.public}")
        click.echo(pair.private)


@key.command(name="public")
@click.argument("keyfile", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def key_public(ctx, keyfile):
    """Print the public key of an identity file."""
    try:
        click.echo(AgeBackend(ctx.obj["config"]).public_key(keyfile))
    except LockboxError as e:
        fail(e)


@main.group(name="file")
def file_group():
    """Encrypt and decrypt files with age."""
    pass


@file_group.command(name="encrypt")
@click.argument("input", type=click.Path(exists=True, dir_okay=False))
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="Output file (default: INPUT.age)")
@click.option("-r", "--recipient", "recipients", multiple=True, help="age public key (repeatable)")
@click.option("--armor", is_flag=True, default=False, help="ASCII-armored output")
@click.option("--overwrite", is_flag=True, default=False, help="Replace an existing output file")
@click.pass_context
def file_encrypt(ctx, input, output, recipients, armor, overwrite):
    """Encrypt a file. Prompts for a passphrase when no recipient is given."""
    if not recipients:
        warn("No recipients given, encrypting with a passphrase.")
    try:
        result = encrypt_file(input, output, recipients=list(recipients) or None, armor=armor,
                              overwrite=overwrite, age=AgeBackend(ctx.obj["config"]))
    except (LockboxError, OSError, ValueError) as e:
        fail(e)
    success(f"Encrypted {input} -> {result}")


@file_group.command(name="decrypt")
@click.argument("input", type=click.Path(exists=True, dir_okay=False))
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="Output file (default: INPUT without .age)")
@click.option("-i", "--identity", type=click.Path(exists=True, dir_okay=False), help="age identity file")
@click.option("--overwrite", is_flag=True, default=False, help="Replace an existing output file")
@click.pass_context
def file_decrypt(ctx, input, output, identity, overwrite):
    """Decrypt a file. Prompts for a passphrase when no identity is given."""
    try:
        result = decrypt_file(input, output, identity=identity, overwrite=overwrite,
                              age=AgeBackend(ctx.obj["config"]))
    except (LockboxError, OSError, ValueError) as e:
        fail(e)
    success(f"Decrypted {input} -> {result}")


@main.group()
def secrets():
    """Manage secret envelopes."""
    pass


@secrets.command(name="encrypt")
@click.argument("assignments", nargs=-1, required=True, metavar="NAME=VALUE...")
@click.option("--lockbox", "lockbox_file", type=click.Path(dir_okay=False), help="Envelope file")
@click.option("-r", "--recipient", "recipients", multiple=True, help="age public key (repeatable)")
@click.option("-i", "--identity", type=click.Path(dir_okay=False), help="age identity file")
@click.option("--sops", "use_sops", is_flag=True, default=False, help="Use sops format for a new envelope")
@click.option("--project", help="Project subdirectory")
@click.pass_context
def secrets_encrypt(ctx, assignments, lockbox_file, recipients, identity, use_sops, project):
    """Add or update secrets in an envelope."""
    values = parse_assignments(assignments)
    lockbox_file = Path(lockbox_file) if lockbox_file else get_secrets_path(project)
    fmt = EnvelopeFormat.SOPS if use_sops else EnvelopeFormat.CUSTOM

    try:
        SecretStore(config=ctx.obj["config"]).put(
            lockbox_file,
            values,
            recipients=list(recipients) or None,
            identity=default_identity(identity, project),
            fmt=fmt,
        )
    except (LockboxError, ValueError) as e:
        fail(e)
    info(f"Stored {len(values)} secret(s) in {lockbox_file}")


@secrets.command(name="decrypt")
@click.option("--lockbox", "lockbox_file", type=click.Path(dir_okay=False), help="Envelope file")
@click.option("-i", "--identity", type=click.Path(dir_okay=False), help="age identity file")
@click.option("--name", "names", multiple=True, help="Only output this secret (repeatable)")
@click.option("--format", "output_format", type=click.Choice(["env", "yaml", "json"]), default="env",
              help="Output format")
@click.option("--project", help="Project subdirectory")
@click.pass_context
def secrets_decrypt(ctx, lockbox_file, identity, names, output_format, project):
    """Decrypt and display secrets."""
    lockbox_file = Path(lockbox_file) if lockbox_file else get_secrets_path(project)

    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            values = SecretStore(config=ctx.obj["config"]).get(
                lockbox_file,
                identity=default_identity(identity, project),
                names=list(names) or None,
            )
    except LockboxError as e:
        fail(e)

    for w in caught:
        warn(str(w.message))

    if output_format == "yaml":
        click.echo(yaml.safe_dump(values, default_flow_style=False, sort_keys=False), nl=False)
    elif output_format == "json":
        click.echo(json.dumps(values, indent=2))
    else:
        for name, value in values.items():
            click.echo(f"export {name}={shlex.quote(value)}")


@secrets.command(name="detect")
@click.option("--lockbox", "lockbox_file", type=click.Path(dir_okay=False), help="Envelope file")
@click.option("--project", help="Project subdirectory")
def secrets_detect(lockbox_file, project):
    """Print the format of an envelope: custom, sops or new."""
    lockbox_file = Path(lockbox_file) if lockbox_file else get_secrets_path(project)
    try:
        click.echo(detect_format(lockbox_file).value)
    except LockboxError as e:
        fail(e)


if __name__ == "__main__":
    main()
