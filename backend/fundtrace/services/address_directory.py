"""Categorized address directory: exchanges, seeds and other labelled accounts"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from fundtrace.config import settings
from fundtrace.services.identifiers import is_principal_text, normalize_address

logger = logging.getLogger(__name__)


class AccountCategory(str, Enum):
    """Directory categories"""

    CEX = "cex"
    DEFI = "defi"
    FOUNDATION = "foundation"
    IDENTIFIED = "identified"
    NODE_PROVIDER = "node_provider"
    SPAMMER = "spammer"
    SNS = "sns"
    SUSPECT = "suspect"
    SEED = "seed"


# Public exchange deposit and hot-wallet accounts
BUILTIN_EXCHANGES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Bitget", ("bad030b417484232fd2019cb89096feea3fdd3d9eb39e1d07bcb9a13c7673464",)),
    (
        "Binance",
        (
            "609d3e1e45103a82adc97d4f88c51f78dedb25701e8e51e8c4fec53448aadc29",
            "d3e13d4777e22367532053190b6c6ccf57444a61337e996242b1abfb52cf92c8",
            "220c3a33f90601896e26f76fa619fe288742df1fa75426edfaf759d39f2455a5",
        ),
    ),
    ("Bybit", ("acd76fff0536f863d9dd4b326a1435466f82305758b4b1b4f62ff9fa81c14073",)),
    (
        "CoinEx",
        (
            "9ee1f8087be914d67560484d7e5794115873eb21b4f4b408f338406abf42d324",
            "c50accaa515fe677f04d6a608d306dce10ed0d46048aa5105cb549256f3c4433",
        ),
    ),
    (
        "Coinbase",
        (
            "449ce7ad1298e2ed2781ed379aba25efc2748d14c60ede190ad7621724b9e8b2",
            "4878d23a09b554157b31323004e1cc053567671426ca4eec7b7e835db607b965",
            "4dfa940def17f1427ae47378c440f10185867677109a02bc8374fc25b9dee8af",
            "660b1680dafeedaa68c1f1f4cf8af42ed1dfb8564646efe935a2b9a48528b605",
            "a6ed987d89796f921c8a49d275ec7c9aa04e75a8fc8cd2dbaa5da799f0215ab0",
            "dd15f3040edab88d2e277f9d2fa5cc11616ebf1442279092e37924ab7cce8a74",
        ),
    ),
    ("Gate.io", ("8fe706db7b08f957a15199e07761039a7718937aabcc0fe48bc380a4daf9afb0",)),
    ("HTX", ("935b1a3adc28fd68cacc95afcdec62e985244ce0cfbbb12cdc7d0b8d198b416d",)),
    ("Kraken", ("040834c30cdf5d7a13aae8b57d94ae2d07eefe2bc3edd8cf88298730857ac2eb",)),
    (
        "KuCoin",
        (
            "efa01544f509c56dd85449edf2381244a48fad1ede5183836229c00ab00d52df",
            "00c3df112e62ad353b7cc7bf8ad8ce2fec8f5e633f1733834bf71e40b250c685",
        ),
    ),
    ("MEXC", ("9e62737aab36f0baffc1faac9edd92a99279723eb3feb2e916fa99bb7fe54b59",)),
    (
        "OKX",
        (
            "e7a879ea563d273c46dd28c1584eaa132fad6f3e316615b3eb657d067f3519b5",
            "d2c6135510eaf107bdc2128ef5962c7db2ae840efdf95b9395cdaf4983942978",
        ),
    ),
)


@dataclass(frozen=True)
class DirectoryEntry:
    """A named group of addresses in one category"""

    name: str
    addresses: Tuple[str, ...]
    category: AccountCategory
    principals: Tuple[str, ...] = ()  # Principal text as given, kept for reports


def _normalize_quietly(address: str, owner: str) -> Optional[str]:
    try:
        return normalize_address(address)
    except ValueError:
        logger.warning("Ignoring invalid address %s for %s", address, owner)
        return None


class AddressDirectory:
    """
    Immutable lookup over labelled addresses

    Addresses are stored as lowercase account identifiers; principals given
    in the input are converted to their default account identifier and their
    text is kept in `DirectoryEntry.principals`.
    """

    def __init__(self, entries: Iterable[DirectoryEntry]):
        self._entries: Tuple[DirectoryEntry, ...] = tuple(self._normalize_entry(entry) for entry in entries)

        names: Dict[str, str] = {}
        exchanges: Dict[str, str] = {}
        for entry in self._entries:
            for address in entry.addresses:
                names.setdefault(address, entry.name)
                if entry.category is AccountCategory.CEX:
                    exchanges.setdefault(address, entry.name)

        self._names = MappingProxyType(names)
        self._exchanges = MappingProxyType(exchanges)

    @staticmethod
    def _normalize_entry(entry: DirectoryEntry) -> DirectoryEntry:
        addresses = []
        principals = list(entry.principals)
        for raw in entry.addresses:
            address = _normalize_quietly(raw, entry.name)
            if address is None:
                continue
            addresses.append(address)
            raw = raw.strip()
            if is_principal_text(raw) and raw not in principals:
                principals.append(raw)

        return DirectoryEntry(
            name=entry.name,
            addresses=tuple(addresses),
            category=AccountCategory(entry.category),
            principals=tuple(principals),
        )

    @classmethod
    def builtin(cls) -> "AddressDirectory":
        return cls(
            DirectoryEntry(name=name, addresses=addresses, category=AccountCategory.CEX)
            for name, addresses in BUILTIN_EXCHANGES
        )

    @staticmethod
    def entries_from_mapping(data: Mapping[str, Mapping[str, List[str]]]) -> List[DirectoryEntry]:
        """
        Build entries from `{"<category>": {"<name>": ["<address>", ...]}}`

        Raises:
            ValueError: on an unknown category or a malformed group
        """
        entries = []
        for category_name, groups in data.items():
            category = AccountCategory(category_name)
            if not isinstance(groups, Mapping):
                raise ValueError(f"Category {category_name} must map names to address lists")
            for name, addresses in groups.items():
                if isinstance(addresses, str) or not isinstance(addresses, list):
                    raise ValueError(f"Addresses of {name} must be a list")
                entries.append(DirectoryEntry(name=name, addresses=tuple(addresses), category=category))
        return entries

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None, include_builtin: bool = True) -> "AddressDirectory":
        """
        Load a directory from a JSON file, merged after the built-in exchanges

        Without a path only the built-in exchanges are returned.
        """
        entries: List[DirectoryEntry] = []
        if include_builtin:
            entries.extend(cls.builtin().entries)

        if path:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
            entries.extend(cls.entries_from_mapping(data))
            logger.info(f"Loaded address directory from {path}")

        directory = cls(entries)
        for address, owners in directory.find_duplicates().items():
            logger.warning("Address %s listed under several entries: %s", address, ", ".join(owners))
        return directory

    @property
    def entries(self) -> Tuple[DirectoryEntry, ...]:
        return self._entries

    @property
    def exchanges(self) -> Mapping[str, str]:
        """Exchange account -> exchange name"""
        return self._exchanges

    def _addresses_in(self, *categories: AccountCategory) -> List[str]:
        seen = set()
        ordered = []
        for entry in self._entries:
            if entry.category not in categories:
                continue
            for address in entry.addresses:
                if address not in seen:
                    seen.add(address)
                    ordered.append(address)
        return ordered

    @property
    def seed_addresses(self) -> List[str]:
        return self._addresses_in(AccountCategory.SEED)

    @property
    def pattern_addresses(self) -> List[str]:
        """Seed and suspect addresses, in directory order, without duplicates"""
        return self._addresses_in(AccountCategory.SEED, AccountCategory.SUSPECT)

    def is_exchange(self, address: str) -> bool:
        return address in self._exchanges

    def name_for(self, address: str) -> Optional[str]:
        return self._names.get(address)

    def by_category(self) -> Dict[AccountCategory, List[DirectoryEntry]]:
        grouped: Dict[AccountCategory, List[DirectoryEntry]] = {}
        for entry in self._entries:
            grouped.setdefault(entry.category, []).append(entry)
        return grouped

    def find_duplicates(self) -> Dict[str, List[str]]:
        """Addresses that appear in more than one entry, with the owning entry names"""
        owners: Dict[str, List[str]] = {}
        for entry in self._entries:
            for address in set(entry.addresses):
                owners.setdefault(address, []).append(f"{entry.category.value}/{entry.name}")
        return {address: names for address, names in owners.items() if len(names) > 1}


_directory: Optional[AddressDirectory] = None


def get_directory() -> AddressDirectory:
    """Get or create the directory configured by settings.address_directory_path"""
    global _directory
    if _directory is None:
        _directory = AddressDirectory.load(settings.address_directory_path)
    return _directory
