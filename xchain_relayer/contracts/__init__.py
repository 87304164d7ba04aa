"""Contract ABIs shipped with the relayer."""

import functools
import json
from importlib import resources
from typing import Any, List

WORMHOLE_RELAYER_ABI = "wormhole_relayer.json"
DELIVERY_PROVIDER_ABI = "delivery_provider.json"
WORMHOLE_CORE_ABI = "wormhole_core.json"


@functools.lru_cache(maxsize=None)
def load_contract_abi(filename: str) -> List[Any]:
    """Load an ABI JSON file from the contracts package."""
    with resources.files(__package__).joinpath(filename).open("r", encoding="utf-8") as fh:
        return json.load(fh)


__all__ = ["DELIVERY_PROVIDER_ABI", "WORMHOLE_CORE_ABI", "WORMHOLE_RELAYER_ABI", "load_contract_abi"]
