"""Target list loading: network → operator → bootnode addresses."""

import logging
from pathlib import Path

import yaml

from bnt.models import Target
from bnt.probes import registered_kinds

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_KIND = "relaychain"


class TargetsError(Exception):
    """Raised when the target list is missing or structurally invalid."""


def load_targets(path: Path | str) -> list[Target]:
    """Load and flatten the bootnode target list.

    The file is JSON (or YAML, which is a superset) shaped as::

        {
          "polkadot": {
            "commandId": "relaychain",
            "members": {"operator-a": ["/dns/.../p2p/12D3...", ...]}
          }
        }

    Args:
        path: Path of the target list.

    Returns:
        One ``Target`` per (network, operator, bootnode) combination.

    Raises:
        TargetsError: If the file cannot be read or parsed, or an entry
            has the wrong shape.
    """
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise TargetsError(f"Cannot read bootnodes config {p}: {exc}") from exc

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise TargetsError(f"Invalid bootnodes config {p}: {exc}") from exc

    if raw is None:
        logger.warning("Bootnodes config %s is empty", p)
        return []

    targets = flatten_targets(raw)
    logger.info("Loaded %d bootnode target(s) from %s", len(targets), p)
    return targets


def flatten_targets(raw: object) -> list[Target]:
    """Turn the nested target mapping into a flat list of ``Target``.

    Raises:
        TargetsError: If *raw* or one of its entries has the wrong shape.
    """
    if not isinstance(raw, dict):
        raise TargetsError(
            f"Expected a mapping of networks at the top level, got {type(raw).__name__}"
        )

    targets: list[Target] = []
    seen: set[tuple[str, str, str]] = set()
    known_kinds = registered_kinds()
    for network, entry in raw.items():
        if not isinstance(entry, dict):
            raise TargetsError(f"Network {network!r}: expected a mapping")

        command_kind = entry.get("commandId", DEFAULT_COMMAND_KIND)
        if command_kind not in known_kinds:
            # Still probed: the node start fails and is reported per bootnode.
            logger.warning(
                "Network %r: unknown commandId %r (known: %s)",
                network,
                command_kind,
                ", ".join(known_kinds),
            )
        members = entry.get("members", {})
        if not isinstance(members, dict):
            raise TargetsError(f"Network {network!r}: 'members' must be a mapping")

        for operator, bootnodes in members.items():
            if isinstance(bootnodes, str):
                bootnodes = [bootnodes]
            if not isinstance(bootnodes, list):
                raise TargetsError(
                    f"Network {network!r}, operator {operator!r}: "
                    f"expected a list of bootnode addresses"
                )
            for bootnode in bootnodes:
                key = (str(network), str(operator), str(bootnode))
                if key in seen:
                    # Duplicates would share one working directory.
                    logger.warning(
                        "Skipping duplicate bootnode %s for %s/%s", key[2], key[1], key[0]
                    )
                    continue
                seen.add(key)
                targets.append(
                    Target(
                        network=key[0],
                        operator=key[1],
                        bootnode=key[2],
                        command_kind=str(command_kind),
                    )
                )

    return targets
