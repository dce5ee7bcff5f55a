"""
CLI command handlers.

Path: remotepool/cli/commands.py

Handles: remotepool probe|run|upload|download|exists

Credentials come from --user/--ask-pass/--key-file when given, then from
REMOTEPOOL_* environment variables.
"""

import getpass
import logging
import sys
from typing import Optional

import paramiko

import remotepool
from remotepool.core.config import get_config
from remotepool.core.errors import RemotePoolError
from remotepool.core.log import configure_from_config, configure_logging
from remotepool.pool.host_pool import HostPool
from remotepool.vault import Credential, EnvironmentStore, MemoryStore, get_auth


# Failures reported as "Error: ..." instead of a traceback
HANDLED_ERRORS = (RemotePoolError, paramiko.SSHException, ValueError, OSError)


def setup_logging(args):
    """Enable logging from --verbose or the config file."""
    if getattr(args, "verbose", False):
        configure_logging(level=logging.DEBUG)
    else:
        configure_from_config(get_config())


def parse_gateway(value: str):
    """Split 'host' or 'host:port' into (host, port)."""
    host, sep, port = value.rpartition(":")
    if not sep:
        return value, None
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Invalid gateway port in {value}")


def configure_credentials(args):
    """Install the CLI credential stores on the process-wide resolver."""
    stores = []

    if args.user:
        password = None
        if args.ask_pass:
            password = getpass.getpass(f"Password for {args.user}@{args.host}: ")
        cred = Credential(args.user, password, private_key=args.key_file)

        memory = MemoryStore({args.host: cred})
        if args.gateway:
            # Same login on the gateway unless the environment says otherwise
            memory.add(parse_gateway(args.gateway)[0], cred)
        stores.append(memory)

    stores.append(EnvironmentStore())
    get_auth().stores = stores


def connect(args) -> HostPool:
    """Build the host pool for a command."""
    configure_credentials(args)

    options = {}
    if args.proto:
        options["proto"] = args.proto
    if args.port:
        options["port"] = args.port
    if args.gateway:
        gateway_host, gateway_port = parse_gateway(args.gateway)
        options["gateway_host"] = gateway_host
        if gateway_port:
            options["gateway_port"] = gateway_port

    return remotepool.connect(args.host, **options)


def _write(stream):
    def callback(data: str):
        stream.write(data)
        stream.flush()
    return callback


def handle_probe(args) -> int:
    """Handle probe subcommand."""
    proto = remotepool.host_type(args.host, timeout=args.timeout)
    if proto is None:
        print(f"{args.host}: no SSH or WinRM port answered")
        return 1

    print(f"{args.host}: {proto}")
    return 0


def handle_run(args) -> int:
    """Handle run subcommand."""
    command, *command_args = args.remote_command

    try:
        host_pool = connect(args)
        result = host_pool.run(
            command,
            *command_args,
            sudo=args.sudo,
            pty=args.pty,
            input=args.input,
            retries=args.retries,
            accepted_exit_codes=args.accept,
            on_stdout=_write(sys.stdout),
            on_stderr=_write(sys.stderr),
        )
    except HANDLED_ERRORS as e:
        print(f"Error: {e}")
        return 1

    if result.is_success(args.accept):
        return 0
    return result.exit_code if result.exit_code else 1


def handle_upload(args) -> int:
    """Handle upload subcommand."""
    try:
        host_pool = connect(args)
        remote = host_pool.upload(
            args.local,
            args.remote,
            sudo=args.sudo,
            owner=args.owner,
            group=args.group,
            mode=args.mode,
            retries=args.retries,
        )
    except HANDLED_ERRORS as e:
        print(f"Error: {e}")
        return 1

    print(f"Uploaded {args.local} -> {args.host}:{remote}")
    return 0


def handle_download(args) -> int:
    """Handle download subcommand."""
    local: Optional[str] = args.local

    try:
        host_pool = connect(args)
        downloaded = host_pool.download(args.remote, local, sudo=args.sudo, retries=args.retries)
    except HANDLED_ERRORS as e:
        print(f"Error: {e}")
        return 1

    if local is None:
        sys.stdout.write(downloaded)
    else:
        print(f"Downloaded {args.host}:{args.remote} -> {downloaded}")
    return 0


def handle_exists(args) -> int:
    """Handle exists subcommand."""
    try:
        host_pool = connect(args)
        exists = host_pool.file_exist(args.path, sudo=args.sudo, retries=args.retries)
    except HANDLED_ERRORS as e:
        print(f"Error: {e}")
        return 1

    print(f"{args.host}:{args.path} {'exists' if exists else 'does not exist'}")
    return 0 if exists else 1
