"""Contract ABIs and call data encoding.

Only the functions and events the service touches are declared. The full
contract ABIs are produced by the contracts' own build and are not needed
here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector

if TYPE_CHECKING:
    from title_registry.domain.chain_protocol import MintParams

MINT_FUNCTION = "mintProperty"
MINT_SIGNATURE = "mintProperty(address,string,string,string,string,string,string,string[])"
MINT_ARG_TYPES = ["address", "string", "string", "string", "string", "string", "string", "string[]"]

TITLE_MINTED_EVENT = "TitleMinted"
PROPERTY_SOLD_EVENT = "PropertySold"


def _inputs(*pairs: tuple[str, str], indexed: tuple[str, ...] = ()) -> list[dict]:
    return [
        {"name": name, "type": typ, **({"indexed": name in indexed} if indexed else {})}
        for name, typ in pairs
    ]


PROPERTY_TITLE_ABI: list[dict] = [
    {
        "type": "function",
        "name": MINT_FUNCTION,
        "stateMutability": "nonpayable",
        "inputs": _inputs(
            ("owner", "address"),
            ("surveyNumber", "string"),
            ("propertyId", "string"),
            ("propertyAddress", "string"),
            ("area", "string"),
            ("ownerName", "string"),
            ("description", "string"),
            ("documentHashes", "string[]"),
        ),
        "outputs": [{"name": "tokenId", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "setVerified",
        "stateMutability": "nonpayable",
        "inputs": _inputs(("tokenId", "uint256"), ("verified", "bool")),
        "outputs": [],
    },
    {
        "type": "function",
        "name": "isVerified",
        "stateMutability": "view",
        "inputs": _inputs(("tokenId", "uint256")),
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": _inputs(("to", "address"), ("tokenId", "uint256")),
        "outputs": [],
    },
    {
        "type": "function",
        "name": "ownerOf",
        "stateMutability": "view",
        "inputs": _inputs(("tokenId", "uint256")),
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "event",
        "name": TITLE_MINTED_EVENT,
        "anonymous": False,
        "inputs": _inputs(
            ("tokenId", "uint256"),
            ("owner", "address"),
            ("propertyId", "string"),
            indexed=("tokenId", "owner"),
        ),
    },
]

MARKETPLACE_ABI: list[dict] = [
    {
        "type": "function",
        "name": "listProperty",
        "stateMutability": "nonpayable",
        "inputs": _inputs(("tokenId", "uint256"), ("price", "uint256")),
        "outputs": [],
    },
    {
        "type": "function",
        "name": "listings",
        "stateMutability": "view",
        "inputs": _inputs(("tokenId", "uint256")),
        "outputs": [
            {"name": "seller", "type": "address"},
            {"name": "price", "type": "uint256"},
            {"name": "active", "type": "bool"},
        ],
    },
    {
        "type": "function",
        "name": "buyProperty",
        "stateMutability": "payable",
        "inputs": _inputs(("tokenId", "uint256")),
        "outputs": [],
    },
    {
        "type": "function",
        "name": "pendingWithdrawals",
        "stateMutability": "view",
        "inputs": _inputs(("account", "address")),
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "withdrawProceeds",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "type": "event",
        "name": PROPERTY_SOLD_EVENT,
        "anonymous": False,
        "inputs": _inputs(
            ("tokenId", "uint256"),
            ("buyer", "address"),
            ("seller", "address"),
            ("price", "uint256"),
            indexed=("tokenId", "buyer", "seller"),
        ),
    },
]


def encode_mint_call(params: MintParams) -> str:
    """ABI-encode a mintProperty call (selector + arguments) as 0x-hex."""
    selector = function_signature_to_4byte_selector(MINT_SIGNATURE)
    body = encode(MINT_ARG_TYPES, params.as_args())
    return "0x" + (selector + body).hex()
