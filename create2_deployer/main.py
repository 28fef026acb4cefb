#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List

from .core.artifact import parse_artifact
from .core.client.local_host import LocalFileService
from .core.client.rpc_provider import JsonRpcProvider
from .core.codec import ConstructorInput, encode_arguments, get_hint
from .core.factory import FactoryDeployer, compute_create2_address, generate_salt
from .core.networks import NETWORKS
from .core.payload import build_payload, payload_hex
from .core.session import DeploymentSession
from .utils.config_manager import ConfigManager, DeployerConfig
from .utils.exceptions import ArtifactParseError, Create2DeployerError, ValidationError
from .utils.logging import setup_logging

LOG = logging.getLogger(__name__)


def parse_constructor_args(pairs: List[str]) -> Dict[str, str]:
    """Turn ``name=value`` pairs into a dict"""
    result = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValidationError(f"Constructor argument must be name=value, got '{pair}'")
        name, value = pair.split("=", 1)
        result[name.strip()] = value
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Deploy compiled contracts at deterministic CREATE2 addresses"
    )
    parser.add_argument("--config", default=None,
                        help="Path to YAML or JSON configuration file")
    parser.add_argument("--log-level", default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level")
    parser.add_argument("--log-file", default=None,
                        help="Path to log file")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("networks", help="List selectable networks")

    salt = sub.add_parser("salt", help="Generate a random salt")
    salt.add_argument("--size", type=int, default=None, help="Salt size in bytes")

    for name, help_text in (
        ("encode", "Print the init code for an artifact"),
        ("predict", "Compute the CREATE2 address offline"),
        ("deploy", "Deploy through the factory"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("artifact", help="Compiled contract JSON")
        cmd.add_argument("--arg", action="append", default=[], metavar="NAME=VALUE",
                         help="Constructor argument (repeatable)")
        if name != "encode":
            cmd.add_argument("--salt", default=None, help="Hex salt (random when omitted)")
            cmd.add_argument("--factory", default=None, help="Factory contract address")
        if name == "deploy":
            cmd.add_argument("--rpc-url", default=None, help="JSON-RPC endpoint")
            cmd.add_argument("--network", type=int, default=None,
                             help="Chain id to switch to before deploying")
            cmd.add_argument("--output", default=None,
                             help="Write the deployment record as JSON")

    return parser


def encode_from_file(path: str, args: Dict[str, str]) -> bytes:
    try:
        raw_text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ArtifactParseError(f"Failed to read {path}: {e}", path=path, cause=e)
    artifact = parse_artifact(raw_text, path=path)
    inputs = {}
    for param in artifact.constructor_inputs:
        if not args.get(param.name):
            raise ValidationError(
                f"Missing constructor argument '{param.name}' ({param.type}) {get_hint(param.type)}".rstrip(),
                parameter=param.name
            )
        inputs[param.name] = ConstructorInput(param.type, args[param.name])
    encoded = encode_arguments(artifact.constructor_inputs, inputs)
    return build_payload(artifact.bytecode, artifact.constructor_inputs, encoded)


async def run_deploy(args: argparse.Namespace, config: DeployerConfig) -> int:
    file_service = LocalFileService(args.artifact)
    constructor_args = parse_constructor_args(args.arg)

    async with JsonRpcProvider(
        config.rpc_url,
        private_key=config.private_key,
        receipt_timeout=config.receipt_timeout,
        poll_interval=config.poll_interval
    ) as provider:
        deployer = FactoryDeployer(provider, config.factory_address, log_service=file_service)
        async with DeploymentSession(
            file_service, provider, deployer, salt_size=config.salt_size
        ) as session:
            if config.account:
                session.accounts = [config.account]

            network_id = args.network or config.network_id
            if network_id and network_id != session.network_id:
                await session.select_network(network_id)

            artifact = await session.load_artifact()
            for param in artifact.constructor_inputs:
                if param.name in constructor_args:
                    session.set_input(param.name, constructor_args[param.name])

            if args.salt:
                session.set_salt(args.salt)
            else:
                LOG.info(f"Generated salt {session.generate_salt()}")

            if not session.is_ready:
                missing = [
                    f"{p.name} ({p.type}) {get_hint(p.type)}".rstrip()
                    for p in artifact.constructor_inputs
                    if not constructor_args.get(p.name)
                ]
                raise ValidationError(f"Missing constructor arguments: {', '.join(missing)}")

            record = await session.deploy()

    print(record.address)
    if args.output:
        with open(args.output, 'w') as f:
            json.dump(record.to_dict(), f, indent=2)
        LOG.info(f"Deployment record saved to: {args.output}")
    return 0


async def main(argv: List[str] = None) -> int:
    """Main execution flow"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ConfigManager().load(
            args.config,
            log_level=args.log_level,
            log_file=args.log_file,
            rpc_url=getattr(args, "rpc_url", None),
            factory_address=getattr(args, "factory", None),
        )
    except Create2DeployerError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_file)

    try:
        if args.command == "networks":
            for network in NETWORKS:
                print(f"{network.chain_id:>10}  {network.chain_id_hex:<10}  {network.name}")
            return 0

        if args.command == "salt":
            print(generate_salt(args.size or config.salt_size))
            return 0

        if args.command == "encode":
            payload = encode_from_file(args.artifact, parse_constructor_args(args.arg))
            print(payload_hex(payload))
            return 0

        if args.command == "predict":
            payload = encode_from_file(args.artifact, parse_constructor_args(args.arg))
            salt = args.salt or generate_salt(config.salt_size)
            address = compute_create2_address(config.factory_address, salt, payload)
            print(f"{address} (salt {salt})")
            return 0

        if args.command == "deploy":
            return await run_deploy(args, config)

    except Create2DeployerError as e:
        LOG.error(f"{args.command} failed: {e}")
        return 1
    except OSError as e:
        LOG.error(f"{args.command} failed: {e}")
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
