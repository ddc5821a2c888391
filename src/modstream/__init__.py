"""
Modstream - rule-based Discord automod with a live moderation event log

Core Components:

- **PolicyStore**: per-guild automod settings, cached and validated
- **FilterPipeline**: ordered lexical checks (banned words, invites, links,
  caps, mention spam)
- **SpamTracker**: bounded sliding-window message rate tracking
- **EnforcementExecutor**: deletes, timeouts, kicks, bans and warnings, with
  failures recorded rather than raised
- **EventLog / EventBroadcaster**: gapless, ordered event persistence and
  live fan-out with a replay buffer

Usage:
    from modstream.main import main
    main()
"""
