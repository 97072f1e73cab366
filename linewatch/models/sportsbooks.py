"""
Sportsbook reference data.

Static identity, tier and display metadata for the books we track.
Tier 1 = national books with the deepest markets, tier 3 = regional and
offshore books. Read-only after import.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

from linewatch.errors import UnknownBookmaker


@dataclass(frozen=True)
class Sportsbook:
    """A bookmaker we accept quotes from."""
    key: str            # Odds API bookmaker key
    name: str
    tier: int           # 1-3
    rating: float
    reliability: str
    limits: str
    states: tuple[str, ...]
    features: tuple[str, ...]
    bonus: str
    promo_code: str
    color: str
    logo: str

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "tier": self.tier,
            "rating": self.rating,
            "reliability": self.reliability,
            "limits": self.limits,
            "states": list(self.states),
            "features": list(self.features),
            "bonus": self.bonus,
            "promo_code": self.promo_code,
            "color": self.color,
            "logo": self.logo,
        }


SPORTSBOOKS: tuple[Sportsbook, ...] = (
    # Tier 1: Major US books
    Sportsbook("draftkings", "DraftKings", 1, 5.0, "Excellent", "Very High", ("All Legal States",),
               ("Live Betting", "Cash Out", "Same Game Parlay"), "Up to $1,000 Deposit Match",
               "ULTIMATE1000", "#53D337", "🎯"),
    Sportsbook("fanduel", "FanDuel", 1, 5.0, "Excellent", "Very High", ("All Legal States",),
               ("Live Betting", "Cash Out", "Same Game Parlay"), "$1,000 No Sweat First Bet",
               "ULTIMATE1K", "#0088FF", "⭐"),
    Sportsbook("betmgm", "BetMGM", 1, 5.0, "Excellent", "Very High", ("All Legal States",),
               ("Live Betting", "Cash Out", "Easy Parlay"), "$1,500 First Bet Offer",
               "ULTIMATE1500", "#BB9645", "🦁"),
    Sportsbook("caesars", "Caesars", 1, 4.8, "Excellent", "Very High", ("All Legal States",),
               ("Live Betting", "Cash Out", "Same Game Parlay"), "$1,000 First Bet on Caesars",
               "ULTIMATE1000C", "#FFD700", "👑"),
    Sportsbook("espnbet", "ESPN BET", 1, 4.7, "Excellent", "High", ("Growing",),
               ("Live Betting", "ESPN Integration"), "$1,000 First Bet Reset",
               "ESPNULTIMATE", "#FF0033", "📺"),
    Sportsbook("bet365", "bet365", 1, 4.9, "Excellent", "Very High", ("CO", "NJ", "VA", "OH", "LA"),
               ("Live Betting", "Early Payout", "Bet Builder"), "Bet $1 Get $200 in Bonus Bets",
               "BET365MAX", "#005A2B", "🟢"),

    # Tier 2: Established books
    Sportsbook("betrivers", "BetRivers", 2, 4.5, "Very Good", "High", ("Multiple States",),
               ("Live Betting", "iRush Rewards"), "$500 Second Chance Bet",
               "RIVER500", "#005EB8", "🏞️"),
    Sportsbook("pointsbet", "PointsBet", 2, 4.5, "Very Good", "Medium-High", ("Select States",),
               ("PointsBetting", "Live Betting"), "$500 in Second Chance Bets",
               "POINTSMAX", "#FF6B35", "📊"),
    Sportsbook("wynnbet", "WynnBET", 2, 4.4, "Very Good", "Medium", ("Select States",),
               ("Live Betting", "Wynn Rewards"), "$1,000 Risk Free Bet",
               "WYNNMAX", "#B8860B", "🎰"),
    Sportsbook("barstool", "Barstool", 2, 4.3, "Good", "Medium", ("Select States",),
               ("Live Betting", "Barstool Content"), "$1,000 First Bet Match",
               "STOOLMAX", "#000000", "🪑"),
    Sportsbook("unibet", "Unibet", 2, 4.5, "Very Good", "Medium-High", ("Select States",),
               ("Live Betting", "Cash Out"), "$500 Second Chance Bet",
               "UNIMAX", "#00A651", "🌐"),
    Sportsbook("fanatics", "Fanatics", 2, 4.6, "Very Good", "High", ("Growing Fast",),
               ("Live Betting", "FanCash Rewards"), "Get $1,000 in Bonus Bets",
               "FANMAX1K", "#001952", "⚡"),
    Sportsbook("borgata", "Borgata", 2, 4.4, "Very Good", "High", ("NJ", "PA", "MI", "WV"),
               ("Live Betting", "Cash Out"), "$1,000 Bonus Bet",
               "BORGMAX", "#8B4513", "🎰"),
    Sportsbook("betway", "Betway", 2, 4.3, "Very Good", "Medium-High", ("PA", "NJ", "AZ", "CO", "IN", "IA", "OH", "VA"),
               ("Live Betting", "Cash Out", "Parlay+"), "$250 First Bet Match",
               "BETWAYMAX", "#000000", "💎"),
    Sportsbook("williamhill", "William Hill", 2, 4.2, "Very Good", "High", ("Multiple States",),
               ("Live Betting", "Sharp Lines"), "$1,000 Risk Free Bet",
               "HILLMAX", "#0066B2", "🏔️"),

    # Tier 3: Regional, specialised and offshore books
    Sportsbook("hardrock", "Hard Rock Bet", 3, 4.2, "Good", "Medium", ("FL", "NJ", "Others"),
               ("Live Betting", "Unity Rewards"), "$100 Risk Free Bet",
               "ROCKBET", "#E31837", "🎸"),
    Sportsbook("superbook", "SuperBook", 3, 4.0, "Good", "Medium", ("NV", "AZ", "CO", "NJ", "OH", "TN"),
               ("Sharp Lines", "Player Props"), "$1,000 First Bet",
               "SUPERMAX", "#D32F2F", "📖"),
    Sportsbook("betfred", "Betfred", 3, 4.0, "Good", "Medium", ("CO", "IA", "LA", "MD", "OH", "PA", "VA"),
               ("Live Betting", "Pick Your Punt"), "$200 in Free Bets",
               "FREDMAX", "#E41E31", "🎲"),
    Sportsbook("sisportsbook", "SI Sportsbook", 3, 4.1, "Good", "Medium", ("Select States",),
               ("Live Betting", "SI Content"), "$1,000 First Bet",
               "SIMAX", "#DD0031", "📰"),
    Sportsbook("twinspires", "TwinSpires", 3, 3.9, "Good", "Medium", ("Multiple States",),
               ("Live Betting", "Horse Racing Integration"), "$1,000 Risk Free Bet",
               "TWINMAX", "#0033A0", "🐎"),
    Sportsbook("resorts", "Resorts", 3, 3.8, "Good", "Low-Medium", ("NJ",),
               ("Live Betting",), "$250 Deposit Match",
               "RESORTMAX", "#006837", "🏖️"),
    Sportsbook("playup", "PlayUp", 3, 3.7, "Fair", "Low", ("NJ", "CO"),
               ("Live Betting",), "$200 Risk Free Bet",
               "PLAYMAX", "#FF6B00", "🎮"),
    Sportsbook("foxbet", "FOX Bet", 3, 4.0, "Good", "Medium", ("PA", "MI", "CO", "NJ"),
               ("Live Betting", "FOX Sports Integration"), "$500 Risk Free Bet",
               "FOXMAX", "#003B71", "🦊"),
    Sportsbook("ballybet", "Bally Bet", 3, 3.9, "Good", "Medium", ("Select States",),
               ("Live Betting", "Rewards Integration"), "$500 First Bet",
               "BALLYMAX", "#C8102E", "🎰"),
    Sportsbook("tipico", "Tipico", 3, 4.0, "Good", "Medium", ("NJ", "CO", "IA", "OH"),
               ("Live Betting", "European Expertise"), "$750 Risk Free Bet",
               "TIPICOMAX", "#004B87", "⚽"),
    Sportsbook("sugarhouse", "SugarHouse", 3, 3.9, "Good", "Medium", ("PA", "NJ"),
               ("Live Betting", "iRush Rewards"), "$500 Second Chance",
               "SUGARMAX", "#FFD700", "🏠"),
    Sportsbook("mybookie", "MyBookie", 3, 3.8, "Good", "Medium", ("Offshore",),
               ("Crypto Friendly", "Live Betting"), "100% Deposit Bonus",
               "MYBMAX", "#E74C3C", "📚"),
    Sportsbook("bovada", "Bovada", 3, 4.1, "Good", "High", ("Offshore",),
               ("Crypto Friendly", "Live Betting", "Sharp Lines"), "$750 Sports Welcome Bonus",
               "BOVMAX", "#D32F2F", "🐂"),
    Sportsbook("betonlineag", "BetOnline", 3, 4.0, "Good", "Very High", ("Offshore",),
               ("Crypto Friendly", "Live Betting", "Props"), "50% Welcome Bonus",
               "BOLMAX", "#FF6B35", "💻"),
    Sportsbook("heritage", "Heritage Sports", 3, 4.2, "Very Good", "Very High", ("Offshore",),
               ("Reduced Juice", "Live Betting"), "100% Bonus up to $1,000",
               "HERIMAX", "#1A5490", "🏛️"),
    Sportsbook("bookmaker", "Bookmaker", 3, 4.3, "Very Good", "Very High", ("Offshore",),
               ("Sharp Lines", "High Limits"), "15% Cash Bonus",
               "BOOKMAX", "#2C3E50", "📖"),
)


class SportsbookRegistry:
    """
    Lookup for tracked sportsbooks.

    `get` raises UnknownBookmaker for keys we do not track, so callers can
    tell "book has no quote this cycle" apart from "book does not exist".
    """

    def __init__(self, books: tuple[Sportsbook, ...] = SPORTSBOOKS):
        self._books: dict[str, Sportsbook] = {book.key: book for book in books}

    def get_all(self) -> frozenset[Sportsbook]:
        return frozenset(self._books.values())

    def get(self, key: str) -> Sportsbook:
        book = self._books.get(key)
        if book is None:
            raise UnknownBookmaker(key)
        return book

    def find(self, key: str) -> Optional[Sportsbook]:
        return self._books.get(key)

    def keys(self) -> list[str]:
        return list(self._books)

    def by_tier(self, tier: int) -> list[Sportsbook]:
        return [book for book in self._books.values() if book.tier == tier]

    def __contains__(self, key: object) -> bool:
        return key in self._books

    def __iter__(self) -> Iterator[Sportsbook]:
        return iter(self._books.values())

    def __len__(self) -> int:
        return len(self._books)


# Shared default instance
registry = SportsbookRegistry()
