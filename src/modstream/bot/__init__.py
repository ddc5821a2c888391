"""
Discord integration for Modstream.

- **discord_adapter.py**: executes enforcement actions through py-cord and
  maps Discord errors onto enforcement error kinds
- **cogs/message_listener.py**: feeds guild messages into the pipeline
- **cogs/moderation_cmds.py**: moderator slash commands and ``/automod``
"""
