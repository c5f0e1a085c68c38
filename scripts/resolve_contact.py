#!/usr/bin/env python3
"""
Resolve a name or nickname from the command line.

Runs the same resolution as GET /api/identity/resolve without the server:

    python scripts/resolve_contact.py Mandy
    python scripts/resolve_contact.py "Big J" --fast
    python scripts/resolve_contact.py Mandy --json
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import json
import logging

from api.services.identity_resolver import ResolvedIdentity, get_identity_resolver

logger = logging.getLogger(__name__)


def format_identity(identity: ResolvedIdentity, max_matches: int = 5) -> str:
    """Plain-text rendering of a resolution for the terminal."""
    lines = [identity.summary]

    for i, match in enumerate(identity.matches[:max_matches], 1):
        lines.append("")
        lines.append(f"{i}. {match.name} [{match.confidence.value}] ({', '.join(match.sources)})")
        lines.append(f"   handles: {', '.join(match.handles)}")
        lines.append(f"   why: {match.match_reason}")
        for example in match.examples[:2]:
            date = (example.date or "")[:10]
            lines.append(f"   {date} {example.text[:100]}")

    if len(identity.matches) > max_matches:
        lines.append("")
        lines.append(f"... and {len(identity.matches) - max_matches} more")

    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description='Resolve a name or nickname to a contact')
    parser.add_argument('name', help='Name, nickname or alias (e.g. "Mandy")')
    parser.add_argument('--fast', action='store_true', help='Stop at the first confident source')
    parser.add_argument('--json', action='store_true', help='Print the full result as JSON')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s: %(message)s',
    )

    identity = get_identity_resolver().resolve(args.name, search_all_sources=not args.fast)

    if args.json:
        print(json.dumps(identity.to_dict(), indent=2))
    else:
        print(format_identity(identity))

    return 0 if identity.best_match else 1


if __name__ == '__main__':
    sys.exit(main())
