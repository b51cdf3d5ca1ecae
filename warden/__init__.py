"""
Warden — Peer-Voted Membership for a Whitelisted Game Server
=============================================================
Turns a stream of votes and ratings from community members into
authoritative admission and exclusion decisions, then mirrors those
decisions onto the game server's whitelist.

Package layout::

    warden/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Role/status sets, offline UUIDs, time helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings + reputation reasons
    ├── engine/
    │   ├── outcomes.py    # Typed result objects for every entry point
    │   ├── policy.py      # MembershipPolicy (settings table → dataclass)
    │   ├── decision.py    # Pure application decision function
    │   ├── reputation.py  # Pure weight / exclusion / amnesty math
    │   ├── cache.py       # Read-through "has voted" cache
    │   └── session_state.py  # Conversational SessionState union
    ├── services/
    │   ├── retry.py               # Transaction runner with backoff
    │   ├── collaborators.py       # WhitelistSynchronizer + Notifier protocols
    │   ├── vote_ledger.py         # cast / retract / tally
    │   ├── decision_service.py    # DecisionEngine
    │   ├── application_service.py # Submission, Q&A, deletion
    │   ├── reputation_ledger.py   # ReputationLedger
    │   ├── reconciliation_service.py  # Tally drift repair
    │   ├── whitelist_service.py   # RCON whitelist synchronizer
    │   ├── notification_service.py    # Discord DM notifier
    │   ├── settings_service.py    # Settings CRUD with audit
    │   └── admin_service.py       # Audit helpers
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/          # Slash commands + periodic jobs
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Admin REST endpoints
"""

__version__ = "0.1.0"
