"""
Known-token registry for Monad mainnet (chain 143).

Maps uppercase symbols to contract address and decimals. Native MON uses
the zero address. Tokens listed here are the ones the LiFi aggregator and
the Relay solver network are assumed to route; anything else trades on the
nad.fun bonding curve.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from .errors import AppError, ErrorCode

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"
USDC_ADDRESS = "0x754704Bc059F8C67012fEd69BC8A327a5aafb603"
LIFI_ROUTER_ADDRESS = "0x026F252016A7C47CDEf1F05a3Fc9E20C92a49C37"
MONAD_MAINNET_CHAIN_ID = 143


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: str
    decimals: int = 18

    @property
    def is_native(self) -> bool:
        return self.address == NATIVE_TOKEN_ADDRESS


_TOKENS: dict[str, tuple[str, int]] = {
    # Native & wrapped
    "MON": (NATIVE_TOKEN_ADDRESS, 18),
    "WMON": ("0x3bd359C1119dA7Da1D913D1C4D2B7c461115433A", 18),
    # Stablecoins
    "USDC": (USDC_ADDRESS, 6),
    "USDT0": ("0xe7cd86e13AC4309349F30B3435a9d337750fC82D", 6),
    "USDT": ("0xe7cd86e13AC4309349F30B3435a9d337750fC82D", 6),
    "AUSD": ("0x00000000eFE302BEAA2b3e6e1b18d08D69a9012a", 6),
    "IDRX": ("0x18Bc5bcC660cf2B9cE3cd51a404aFe1a0cBD3C22", 2),
    "USD*": ("0x1808D4aA4D4a7cf66bb6515BF126edEfA2b018c1", 6),
    "USD1": ("0x111111d2bf19e43C34263401e0CAd979eD1cdb61", 6),
    # Yield / staking stablecoins
    "EARNAUSD": ("0x103222f020e98Bba0AD9809A011FDF8e6F067496", 6),
    "SAUSD": ("0xD793c04B87386A6bb84ee61D98e0065FdE7fdA5E", 6),
    "SUUSD": ("0x8BF591Eae535f93a242D5A954d3Cde648b48A5A8", 18),
    "SYZUSD": ("0x484be0540aD49f351eaa04eeB35dF0f937D4E73f", 18),
    "WSRUSD": ("0x4809010926aec940b550D34a46A52739f996D75D", 18),
    "LVUSD": ("0xFD44B35139Ae53FFF7d8F2A9869c503D987f00d1", 18),
    "YZUSD": ("0x9dcB0D17eDDE04D27F387c89fECb78654C373858", 18),
    "THBILL": ("0xfDD22Ce6D1F66bc0Ec89b20BF16CcB6670F55A5a", 6),
    # ETH variants
    "WETH": ("0xEE8c0E9f1BFFb4Eb878d8f15f368A02a35481242", 18),
    "WSTETH": ("0x10Aeaf63194db8d453d4D85a06E5eFE1dd0b5417", 18),
    "WEETH": ("0xA3D68b74bF0528fdD07263c60d6488749044914b", 18),
    "EZETH": ("0x2416092f143378750bb29b79eD961ab195CcEea5", 18),
    "PUFETH": ("0x37D6382B6889cCeF8d6871A8b60E667115eDDBcF", 18),
    "SUETH": ("0x1c22531AA9747d76fFF8F0A43b37954ca67d28e0", 18),
    # BTC variants
    "WBTC": ("0x0555E30da8f98308EdB960aa94C0Db47230d2B9c", 8),
    "BTC.B": ("0xB0F70C0bD6FD87dbEb7C10dC692a2a6106817072", 8),
    "LBTC": ("0xecAc9C5F704e954931349Da37F60E39f515c11c1", 8),
    "SOLVBTC": ("0xaE4EFbc7736f963982aACb17EFA37fCBAb924cB3", 18),
    "XSOLVBTC": ("0xc99F5c922DAE05B6e2ff83463ce705eF7C91F077", 18),
    "SUBTC": ("0xe85411C030fB32A9D8b14Bbbc6CB19417391F711", 18),
    # MON staking / LST
    "APRMON": ("0x0c65A0BC65a5D819235B71F554D210D3F80E0852", 18),
    "GMON": ("0x8498312A6B3CbD158bf0c93AbdCF29E6e4F55081", 18),
    "SMON": ("0xA3227C5969757783154C60bF0bC1944180ed81B9", 18),
    "SHMON": ("0x1B68626dCa36c7fE922fD2d55E4f631d962dE19c", 18),
    "EARNMON": ("0x8FA1365f6E39B7404737721a356B1d4a7b11cA7D", 18),
    "LVMON": ("0x91b81bfbe3A747230F0529Aa28d8b2Bc898E6D56", 18),
    "MCMON": ("0x1D4795A4670033f47f572b910553be0295077b51", 18),
    # Cross-chain assets
    "SOL": ("0xea17E5a9efEBf1477dB45082d67010E2245217f1", 9),
    "XAUT0": ("0x01bFF41798a0BcF287b996046Ca68b395DbC1071", 6),
    # DeFi protocol tokens
    "CAKE": ("0xF59D81cd43f620E722E07f9Cb3f6E41B031017a3", 18),
    "DUST": ("0xAD96C3dffCD6374294e2573A7fBBA96097CC8d7c", 18),
    "EUL": ("0xDef72Af3fc69E1Dd5a094f7DDa08Ba203CD0438B", 18),
    "FOLKS": ("0xFF7F8F301F7A706E3CfD3D2275f5dc0b9EE8009B", 6),
    "NXPC": ("0xD33F18D8d48CbbB2f8b47063DE97f94De0D49B99", 18),
    "MVT": ("0x04f8c38AE80BcF690B947f60F62BdA18145c3D67", 18),
    "LV": ("0x1001fF13bf368Aa4fa85F21043648079F00E1001", 18),
    "YZPP": ("0xb37476cB1F6111cC682b107B747b8652f90B0984", 18),
    "AZND": ("0x4917a5ec9fCb5e10f47CBB197aBe6aB63be81fE8", 18),
    "LOAZND": ("0x9c82eB49B51F7Dc61e22Ff347931CA32aDc6cd90", 18),
    "MUBOND": ("0x336D414754967C6682B5A665C7DAF6F1409E63e8", 18),
    "MEDGE": ("0x1c8eE940B654bFCeD403f2A44C1603d5be0F50Fa", 18),
    "MHYPER": ("0xd90F6bFEd23fFDE40106FC4498DD2e9EDB95E4e7", 18),
    # nad.fun community tokens
    "CHOG": ("0x350035555E10d9AfAF1566AaebfCeD5BA6C27777", 18),
    "APR": ("0x0a332311633C0625f63CFc51EE33fC49826E0a3C", 18),
}

KNOWN_TOKENS: dict[str, TokenInfo] = {
    symbol: TokenInfo(symbol=symbol, address=address, decimals=decimals)
    for symbol, (address, decimals) in _TOKENS.items()
}

# First symbol wins for aliased addresses (USDT0 before USDT)
_BY_ADDRESS: dict[str, TokenInfo] = {}
for _info in KNOWN_TOKENS.values():
    _BY_ADDRESS.setdefault(_info.address.lower(), _info)


def get_token_by_symbol(symbol: str) -> Optional[TokenInfo]:
    return KNOWN_TOKENS.get(symbol.upper())


def get_token_by_address(address: str) -> Optional[TokenInfo]:
    return _BY_ADDRESS.get(address.lower())


def is_known_token(address: str) -> bool:
    return address.lower() in _BY_ADDRESS


def symbol_for_address(address: str, default: str = "UNKNOWN") -> str:
    info = get_token_by_address(address)
    return info.symbol if info else default


def resolve_token(token_or_symbol: str) -> TokenInfo:
    """
    Resolve a symbol or an address to a TokenInfo.

    Unknown addresses resolve to 18 decimals (the nad.fun default); unknown
    symbols raise.
    """
    if token_or_symbol.lower().startswith("0x"):
        known = get_token_by_address(token_or_symbol)
        if known:
            return known
        return TokenInfo(symbol="UNKNOWN", address=token_or_symbol, decimals=18)

    known = get_token_by_symbol(token_or_symbol)
    if not known:
        raise AppError(
            ErrorCode.UNKNOWN_TOKEN,
            f"Unknown token symbol: {token_or_symbol}",
            details={"symbol": token_or_symbol},
        )
    return known


def to_base_units(amount: float, decimals: int) -> int:
    """Convert a human-readable amount to integer base units (truncating)."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(amount: int, decimals: int) -> float:
    """Convert integer base units to a human-readable float."""
    return float(Decimal(int(amount)) / (Decimal(10) ** decimals))
