"""
remotepool CLI - Main entry point.

Usage:
    remotepool probe <host>
    remotepool run <host> <command> [args...]
    remotepool upload <host> <local> <remote>
    remotepool download <host> <remote> [local]
    remotepool exists <host> <path>
"""

import argparse
import sys

from remotepool import __version__


def main(argv=None):
    """Main CLI entry point."""

    parser = argparse.ArgumentParser(
        prog="remotepool",
        description="Pooled remote command execution over SSH and WinRM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  probe       Detect whether a host speaks SSH or WinRM
  run         Run a command on a host
  upload      Upload a file to a host
  download    Download a file from a host
  exists      Check whether a remote path exists

Credentials:
  --user / --ask-pass, or environment variables:
    REMOTEPOOL_USER, REMOTEPOOL_PASSWORD, REMOTEPOOL_KEY, REMOTEPOOL_KEY_DATA
    REMOTEPOOL_<HOST>_USER, ... (host-specific, take precedence)

Examples:
  remotepool probe web01
  remotepool run web01 -- uname -a
  remotepool run web01 --sudo systemctl restart nginx
  remotepool run web01 --gateway bastion hostname
  remotepool upload web01 app.conf /etc/app.conf --sudo --owner root --mode 0644
  remotepool download web01 /var/log/syslog --sudo

Use 'remotepool <command> --help' for more information on a command.
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    # Probe subcommand
    probe_parser = subparsers.add_parser(
        "probe",
        help="Detect host protocol",
        description="Probe the SSH and WinRM ports of a host",
    )
    probe_parser.add_argument("host", help="Remote host")
    probe_parser.add_argument(
        "--timeout", "-t",
        type=float,
        help="Probe timeout in seconds (default: from config)"
    )

    # Run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Run a command",
        description="Run a command on a remote host and print its output",
    )
    run_parser.add_argument("host", help="Remote host")
    run_parser.add_argument(
        "remote_command",
        nargs="+",
        help="Command and arguments (put them after -- when they start with a dash)"
    )
    _add_connection_args(run_parser)
    run_parser.add_argument("--pty", action="store_true", help="Allocate a pseudo-terminal")
    run_parser.add_argument("--input", "-i", help="Text written to the command's stdin")
    run_parser.add_argument(
        "--accept",
        type=int,
        nargs="+",
        help="Exit codes treated as success (default: 0)"
    )

    # Upload subcommand
    upload_parser = subparsers.add_parser(
        "upload",
        help="Upload a file",
        description="Upload a local file to a remote host",
    )
    upload_parser.add_argument("host", help="Remote host")
    upload_parser.add_argument("local", help="Local file")
    upload_parser.add_argument("remote", help="Remote destination path")
    _add_connection_args(upload_parser)
    upload_parser.add_argument("--owner", help="Remote file owner")
    upload_parser.add_argument("--group", help="Remote file group")
    upload_parser.add_argument("--mode", help="Remote file mode (e.g. 0644)")

    # Download subcommand
    download_parser = subparsers.add_parser(
        "download",
        help="Download a file",
        description="Download a remote file; prints it when no local path is given",
    )
    download_parser.add_argument("host", help="Remote host")
    download_parser.add_argument("remote", help="Remote file")
    download_parser.add_argument("local", nargs="?", help="Local destination (default: print content)")
    _add_connection_args(download_parser)

    # Exists subcommand
    exists_parser = subparsers.add_parser(
        "exists",
        help="Check a remote path",
        description="Exit 0 if the remote file or directory exists, 1 otherwise",
    )
    exists_parser.add_argument("host", help="Remote host")
    exists_parser.add_argument("path", help="Remote path")
    _add_connection_args(exists_parser)

    # Parse args
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    from remotepool.cli import commands

    commands.setup_logging(args)

    # Dispatch to subcommand handler
    if args.command == "probe":
        return commands.handle_probe(args)
    elif args.command == "run":
        return commands.handle_run(args)
    elif args.command == "upload":
        return commands.handle_upload(args)
    elif args.command == "download":
        return commands.handle_download(args)
    elif args.command == "exists":
        return commands.handle_exists(args)
    else:
        parser.print_help()
        return 1


def _add_connection_args(parser: argparse.ArgumentParser):
    """Connection and credential options shared by host commands."""
    parser.add_argument("--user", "-u", help="Login user (default: from environment)")
    parser.add_argument(
        "--ask-pass", "-k",
        action="store_true",
        help="Prompt for the login password"
    )
    parser.add_argument("--key-file", help="Path to SSH private key")
    parser.add_argument(
        "--proto",
        choices=["ssh", "winrm"],
        help="Protocol (default: detect by probing ports)"
    )
    parser.add_argument("--port", "-p", type=int, help="Remote port")
    parser.add_argument("--sudo", "-s", action="store_true", help="Run with sudo / elevation")
    parser.add_argument("--gateway", "-g", help="SSH gateway host (host or host:port)")
    parser.add_argument(
        "--retries", "-r",
        type=int,
        help="Retries for authentication and closed-stream failures (default: from config)"
    )


if __name__ == "__main__":
    sys.exit(main())
