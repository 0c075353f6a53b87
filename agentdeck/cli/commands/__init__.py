"""Command groups registered by ``agentdeck.cli.registry``."""
