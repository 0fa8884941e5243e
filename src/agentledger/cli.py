"""
AgentLedger CLI entrypoint.

This module provides the console_script entrypoint for the agentledger package.
"""


def main():
    """AgentLedger CLI entrypoint."""
    from agentledger.commands import agentledger_app

    agentledger_app()


if __name__ == "__main__":
    main()
