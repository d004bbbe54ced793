"""Known bridge protocols: contract address per EVM chain, program ids on Solana."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class BridgeProtocol:
    name: str
    display_name: str
    contracts: dict[str, str] = field(default_factory=dict)  # chain -> contract address
    programs: frozenset[str] = frozenset()  # Solana program ids


BRIDGE_PROTOCOLS: dict[str, BridgeProtocol] = {
    "wormhole": BridgeProtocol(
        name="wormhole",
        display_name="Wormhole",
        contracts={
            "ethereum": "0x3ee18B2214AFF97000D974cf647E7C347E8fa585",
            "bsc": "0x98f3c9e6E3fAce36bAAd05FE09d375Ef1464288B",
            "polygon": "0x7A4B5a56256163F07b2C80A7cA55aBE66c4ec4d7",
            "arbitrum": "0xa5f208e072434bC67592E4C49C1B991BA79BCA46",
            "base": "0xbebdb6C8ddC678FfA9f8748f85C815C556Dd8ac6",
        },
        programs=frozenset({
            "3u8hJUVTA4jH1wYAyUur7FFZVQ8H635K3tSHHF4ssjQ5",  # core
            "worm2ZoG2kUd4vFXhvjh93UUH596ayRfgQ2MgjNMTth",  # core (legacy id)
        }),
    ),
    "portal": BridgeProtocol(
        name="portal",
        display_name="Portal Bridge",
        contracts={
            "ethereum": "0x0e082F06FF657D94310cB8cE8B0D9a04541d8052",
            "bsc": "0xB6F6D86a8f9879A9c87f643768d9efc38c1Da6E7",
            "polygon": "0x5a58505a96D1dbf8dF91cB21B54419FC36e93fdE",
            "arbitrum": "0x0b2402144Bb366A632D14B83F244D2e0e21bD39c",
            "base": "0x8d2de8d2f73F1F4cAB472AC9A881C9b123C79627",
        },
        programs=frozenset({"wormDTUJ6AWPNvk59vGQbDvGJmqbDTdgWgAqcLBCgUb"}),  # token bridge
    ),
    "layerzero": BridgeProtocol(
        name="layerzero",
        display_name="LayerZero",
        contracts={
            "ethereum": "0x66A71Dcef29A0fFBDBE3c6a460a3B5BC225Cd675",
            "bsc": "0x4D73AdB72bC3DD368966edD0f0b2148401A178E2",
            "polygon": "0x3c2269811836af69497E5F486A85D7316753cf62",
            "arbitrum": "0x3c2269811836af69497E5F486A85D7316753cf62",
            "base": "0xb6319cC6c8c27A8F5dAF0dD3DF91EA35C4720dd7",
        },
    ),
    "multichain": BridgeProtocol(
        name="multichain",
        display_name="Multichain",
        contracts={
            "ethereum": "0xC564EE9f21Ed8A2d8E7e76c085740d5e4c5FaFbE",
            "bsc": "0xd1C5966f9F5Ee6881Ff6b261BBeDa45972B1B5f3",
            "polygon": "0x4f3Aff3A747fCADe12598081e80c6605A8be192F",
            "arbitrum": "0xC564EE9f21Ed8A2d8E7e76c085740d5e4c5FaFbE",
        },
    ),
    "synapse": BridgeProtocol(
        name="synapse",
        display_name="Synapse",
        contracts={
            "ethereum": "0x2796317b0fF8538F253012862c06787Adfb8cEb6",
            "bsc": "0xd123f70AE324d34A9E76b67a27bf77593bA8749f",
            "polygon": "0x8F5BBB2BB8c2Ee94639E55d5F41de9b4839C1280",
            "arbitrum": "0x6F4e8eBa4D337f874Ab57478AcC2Cb5BACdc19c9",
        },
    ),
    "stargate": BridgeProtocol(
        name="stargate",
        display_name="Stargate",
        contracts={
            "ethereum": "0x8731d54E9D02c286767d56ac03e8037C07e01e98",
            "bsc": "0x4a364f8c717cAAD9A442737Eb7b8A55cc6cf18D8",
            "polygon": "0x45A01E4e04F14f7A4a6702c74187c5F6222033cd",
            "arbitrum": "0x53Bf833A5d6c4ddA888F69c22C88C9f356a41614",
        },
    ),
}

# source -> destination pairs seen often enough not to add route risk
COMMON_ROUTES: frozenset[tuple[str, str]] = frozenset({
    ("ethereum", "bsc"),
    ("ethereum", "polygon"),
    ("ethereum", "arbitrum"),
    ("solana", "ethereum"),
})


def is_known_protocol(name: str) -> bool:
    return name in BRIDGE_PROTOCOLS


def is_common_route(source_chain: str, destination_chain: str | None) -> bool:
    return (source_chain, destination_chain) in COMMON_ROUTES


def contracts_on(chain: str) -> dict[str, str]:
    """Lowercased contract address -> protocol name for one EVM chain.

    Raises if two protocols claim the same address on a chain.
    """
    mapping: dict[str, str] = {}
    for proto in BRIDGE_PROTOCOLS.values():
        address = proto.contracts.get(chain)
        if not address:
            continue
        key = address.lower()
        if key in mapping:
            raise ValueError(f"{chain}: {address} claimed by {mapping[key]} and {proto.name}")
        mapping[key] = proto.name
    return mapping


def programs_on_solana() -> dict[str, str]:
    """Program id -> protocol name."""
    mapping: dict[str, str] = {}
    for proto in BRIDGE_PROTOCOLS.values():
        for program in proto.programs:
            mapping[program] = proto.name
    return mapping
