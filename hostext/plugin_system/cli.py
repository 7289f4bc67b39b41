"""Command-line interface for the hostext plugin installer.

Each sub-command is handled by a ``*_command(args, config) -> int`` function
returning one of the ``RC_*`` exit codes.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from hostext.plugin_system.installer import CommandRepackager, PluginInstaller
from hostext.plugin_system.signing import ALGORITHM_ED25519, ALGORITHM_RSA, DistributionSigner
from hostext.utils.exceptions import HostextError

RC_OK = 0
RC_INIT = 1
RC_IO = 2

logger = logging.getLogger("plugin_cli")


def prompt_accept_key(description: str) -> bool:
    """Show a key on the console and ask whether to trust it."""
    print(description)
    try:
        answer = input("Accept this key [yN]? ")
    except EOFError:
        return False
    return answer.strip().lower().startswith("y")


def refuse_key(description: str) -> bool:
    logger.warning(f"Running unattended, refusing untrusted key:\n{description}")
    return False


def create_installer(args: argparse.Namespace, config: Any) -> PluginInstaller:
    """Build an installer from configuration and command-line overrides.

    Args:
        args: Parsed command-line arguments
        config: Initialized configuration manager

    Returns:
        A plugin installer the caller must close
    """
    home = Path(args.home or config.get("host.home", "."))
    unattended = args.unattended or config.get("plugins.unattended", False)
    return PluginInstaller(
        home=home,
        host_version=config.get("host.version"),
        accept_key=refuse_key if unattended else prompt_accept_key,
        truststore=args.truststore or config.get("plugins.truststore"),
        update_urls=args.update_url,
        listing_urls=config.get("plugins.update_urls", []),
        repackager=CommandRepackager(config.get("plugins.rebuild_command"), home),
        network_timeout=config.get("network.timeout", 30.0),
        network_retries=config.get("network.retries", 3),
    )


def _rebuild(args: argparse.Namespace, config: Any) -> bool:
    return not args.no_rebuild and bool(config.get("plugins.rebuild", True))


def list_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the list command.

    Args:
        args: Command-line arguments
        config: Configuration manager

    Returns:
        Exit code
    """
    try:
        with create_installer(args, config) as installer:
            if args.plugin_id:
                plugin = installer.get_installed_plugin(args.plugin_id)
                if plugin is None:
                    print(f"Plugin {args.plugin_id} is not installed.")
                    return RC_INIT
                plugins = [plugin]
            else:
                plugins = installer.get_installed_plugins()

            if not plugins:
                print("No plugins installed.")
                return RC_OK

            for plugin in plugins:
                print(f"{plugin.plugin_id}\t{plugin.version}")
                if args.full:
                    if plugin.description:
                        print(f"    {plugin.description}")
                    for module in plugin.modules:
                        print(f"    Module: {module.id}")
                    contents = installer.get_installed_contents(plugin.plugin_id)
                    print(f"    Files: {len(contents)}")
            return RC_OK
    except HostextError as e:
        print(f"Error listing plugins: {e}", file=sys.stderr)
        return RC_IO


def available_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the available command."""
    try:
        with create_installer(args, config) as installer:
            available = installer.available_plugins()
            if not available:
                print("No plugins available.")
            for entry in available:
                print(f"{entry.plugin_id}\t{entry.describe()}")
            return RC_OK
    except HostextError as e:
        print(f"Error reading plugin listing: {e}", file=sys.stderr)
        return RC_IO


def install_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the install command."""
    try:
        with create_installer(args, config) as installer:
            if args.dir:
                plugin = installer.install_plugin(
                    args.dir, args.file_name,
                    plugin_id=args.plugin_id,
                    check_version=not args.no_check,
                    rebuild=_rebuild(args, config),
                )
            else:
                plugin = installer.install_plugin_from_url(
                    args.url, args.file_name,
                    plugin_id=args.plugin_id,
                    check_version=not args.no_check,
                    rebuild=_rebuild(args, config),
                )
            print(f"Successfully installed plugin: {plugin.plugin_id} v{plugin.version}")
            return RC_OK
    except HostextError as e:
        print(f"Error installing plugin: {e}", file=sys.stderr)
        return RC_IO


def install_id_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the install-id command."""
    try:
        with create_installer(args, config) as installer:
            if installer.get_installed_version(args.plugin_id) is not None:
                print(f"Plugin {args.plugin_id} is already installed, use update.")
                return RC_INIT
            plugin = installer.install_by_id(args.plugin_id, rebuild=_rebuild(args, config))
            print(f"Successfully installed plugin: {plugin.plugin_id} v{plugin.version}")
            return RC_OK
    except HostextError as e:
        print(f"Error installing plugin: {e}", file=sys.stderr)
        return RC_IO


def update_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the update command."""
    try:
        with create_installer(args, config) as installer:
            if installer.get_installed_version(args.plugin_id) is None:
                print(f"Plugin {args.plugin_id} is not installed.")
                return RC_INIT
            plugin = installer.update_plugin(args.plugin_id, args.version, rebuild=_rebuild(args, config))
            if plugin is None:
                print(f"No update available for {args.plugin_id}.")
            else:
                print(f"Successfully updated plugin: {plugin.plugin_id} v{plugin.version}")
            return RC_OK
    except HostextError as e:
        print(f"Error updating plugin: {e}", file=sys.stderr)
        return RC_IO


def uninstall_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the uninstall command."""
    try:
        with create_installer(args, config) as installer:
            if installer.uninstall(args.plugin_id, rebuild=_rebuild(args, config)):
                print(f"Successfully uninstalled plugin: {args.plugin_id}")
            else:
                print(f"Plugin {args.plugin_id} is not installed.")
            return RC_OK
    except HostextError as e:
        print(f"Error uninstalling plugin: {e}", file=sys.stderr)
        return RC_IO


def contents_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the contents command."""
    try:
        with create_installer(args, config) as installer:
            version = installer.get_version_from_contents(args.plugin_id)
            if version is None:
                print(f"Plugin {args.plugin_id} is not installed.")
                return RC_INIT
            print(f"{args.plugin_id} {version}")
            for path in installer.get_installed_contents(args.plugin_id):
                print(path)
            return RC_OK
    except HostextError as e:
        print(f"Error reading plugin contents: {e}", file=sys.stderr)
        return RC_IO


def license_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the license command."""
    try:
        with create_installer(args, config) as installer:
            text = installer.get_license(args.plugin_id)
            if text is None:
                print(f"Plugin {args.plugin_id} has no license file.")
            else:
                print(text)
            return RC_OK
    except HostextError as e:
        print(f"Error reading license: {e}", file=sys.stderr)
        return RC_IO


def modules_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the modules command."""
    try:
        with create_installer(args, config) as installer:
            if args.enable:
                installer.enable_module(args.enable)
                print(f"Enabled module: {args.enable}")
            elif args.disable:
                installer.disable_module(args.disable)
                print(f"Disabled module: {args.disable}")
            else:
                modules = installer.list_modules()
                if not modules:
                    print("No modules available.")
                for module_id, module in sorted(modules.items()):
                    state = "enabled" if module.is_enabled(installer.module_context) else "disabled"
                    print(f"{module_id}\t[{state}]")
            return RC_OK
    except HostextError as e:
        print(f"Error managing modules: {e}", file=sys.stderr)
        return RC_IO


def keygen_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the keygen command."""
    output_path = Path(args.out)
    if output_path.exists() and not args.force:
        print(f"Output file already exists: {output_path}")
        print("Use --force to overwrite")
        return RC_INIT

    try:
        key = DistributionSigner.generate_key(args.user_id, algorithm=args.algorithm)
        signer = DistributionSigner(key)
        signer.save_key(output_path)
        if args.keys_out:
            keys_path = Path(args.keys_out)
            keys_path.parent.mkdir(parents=True, exist_ok=True)
            keys_path.write_text(signer.export_public_keys(), encoding="utf-8")
            print(f"Saved public key ring to: {keys_path}")

        print(key.trusted_key.describe())
        print(f"Saved key to: {output_path}")
        return RC_OK
    except (HostextError, OSError) as e:
        print(f"Error generating signing key: {e}", file=sys.stderr)
        return RC_IO


def sign_command(args: argparse.Namespace, config: Any) -> int:
    """Handle the sign command."""
    try:
        signer = DistributionSigner.load(args.key)
        signature_path = signer.sign_file(args.file)
        print(f"Wrote signature: {signature_path}")
        return RC_OK
    except HostextError as e:
        print(f"Error signing distribution: {e}", file=sys.stderr)
        return RC_IO


COMMANDS: Dict[str, Callable[[argparse.Namespace, Any], int]] = {
    "list": list_command,
    "available": available_command,
    "install": install_command,
    "install-id": install_id_command,
    "update": update_command,
    "uninstall": uninstall_command,
    "contents": contents_command,
    "license": license_command,
    "modules": modules_command,
    "keygen": keygen_command,
    "sign": sign_command,
}


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for every sub-command."""
    parser = argparse.ArgumentParser(
        prog="hostext-plugin",
        description="Install, update and remove plugins of a host installation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument("--home", help="Host installation root (overrides host.home)")
    parser.add_argument("--update-url", action="append", default=None,
                        help="Catalog URL overriding the plugin's own (can be specified multiple times)")
    parser.add_argument("--truststore", help="Keyring file to use instead of the per-plugin one")
    parser.add_argument("--unattended", action="store_true", help="Never prompt; untrusted keys are refused")
    parser.add_argument("--no-rebuild", action="store_true", help="Do not repackage the host afterwards")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    list_parser = subparsers.add_parser("list", help="List installed plugins")
    list_parser.add_argument("plugin_id", nargs="?", help="Only show this plugin")
    list_parser.add_argument("-f", "--full", action="store_true", help="Show modules and file counts")

    subparsers.add_parser("available", help="List plugins published for this host")

    install_parser = subparsers.add_parser("install", help="Install a plugin distribution")
    source = install_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--dir", help="Local directory holding the distribution")
    source.add_argument("--url", help="Base URL to download the distribution from")
    install_parser.add_argument("file_name", help="Distribution file name")
    install_parser.add_argument("--id", dest="plugin_id", help="Expected plugin id")
    install_parser.add_argument("--no-check", action="store_true", help="Skip the host version check")

    install_id_parser = subparsers.add_parser("install-id", help="Install the best published version of a plugin")
    install_id_parser.add_argument("plugin_id", help="Plugin id")

    update_parser = subparsers.add_parser("update", help="Update an installed plugin")
    update_parser.add_argument("plugin_id", help="Plugin id")
    update_parser.add_argument("--version", help="Exact version to install")

    uninstall_parser = subparsers.add_parser("uninstall", help="Remove an installed plugin")
    uninstall_parser.add_argument("plugin_id", help="Plugin id")

    contents_parser = subparsers.add_parser("contents", help="List the files a plugin installed")
    contents_parser.add_argument("plugin_id", help="Plugin id")

    license_parser = subparsers.add_parser("license", help="Show a plugin's license")
    license_parser.add_argument("plugin_id", help="Plugin id")

    modules_parser = subparsers.add_parser("modules", help="List, enable or disable modules")
    toggle = modules_parser.add_mutually_exclusive_group()
    toggle.add_argument("--enable", metavar="MODULE_ID", help="Enable a module")
    toggle.add_argument("--disable", metavar="MODULE_ID", help="Disable a module")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a distribution signing key")
    keygen_parser.add_argument("--user-id", action="append", required=True,
                               help="User id published with the key (can be specified multiple times)")
    keygen_parser.add_argument("--out", required=True, help="Private key output path")
    keygen_parser.add_argument("--keys-out", help="Also write the public key ring (keys.txt) here")
    keygen_parser.add_argument("--algorithm", choices=[ALGORITHM_ED25519, ALGORITHM_RSA],
                               default=ALGORITHM_ED25519, help="Key algorithm")
    keygen_parser.add_argument("--force", action="store_true", help="Overwrite an existing key file")

    sign_parser = subparsers.add_parser("sign", help="Sign a distribution")
    sign_parser.add_argument("file", help="Distribution to sign")
    sign_parser.add_argument("--key", required=True, help="Path to signing key")

    return parser


def run_command(args: argparse.Namespace, config: Any) -> int:
    handler = COMMANDS.get(args.command)
    if handler is None:
        build_parser().print_help()
        return RC_INIT
    return handler(args, config)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)
