#!/usr/bin/env python3
"""Oracle Cloud instance provisioning: CLI entrypoint."""

import argparse

from dotenv import find_dotenv, load_dotenv

from oraboot.commands.images import register_images_command
from oraboot.commands.provision import register_provision_command
from oraboot.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Provision and bootstrap an Oracle Cloud instance")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_provision_command(subparsers)
    register_images_command(subparsers)

    args = parser.parse_args()
    # .env is looked up from the working directory, not from the package
    load_dotenv(find_dotenv(usecwd=True))
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
