"""
Main entry point for the SolidRules CLI.
"""

from solidrules.cli import cli


def main() -> None:
    """Main function for the SolidRules CLI."""
    cli()


if __name__ == "__main__":
    main()
