"""Odds data models, schemas and sportsbook reference data."""

from linewatch.models.schemas import (
    Sport,
    Market,
    GameStatus,
    OddsFormat,
    Price,
    BookmakerQuote,
    Game,
    BestPrice,
    SideConsensus,
    BestOdds,
    OpportunityKind,
    ArbitrageLeg,
    ArbitrageOpportunity,
    MiddleOpportunity,
    Opportunity,
    MovementDirection,
    OddsSnapshot,
    SideMovement,
    Movement,
    QuoteMovement,
)
from linewatch.models.sportsbooks import Sportsbook, SportsbookRegistry, registry

__all__ = [
    "Sport",
    "Market",
    "GameStatus",
    "OddsFormat",
    "Price",
    "BookmakerQuote",
    "Game",
    "BestPrice",
    "SideConsensus",
    "BestOdds",
    "OpportunityKind",
    "ArbitrageLeg",
    "ArbitrageOpportunity",
    "MiddleOpportunity",
    "Opportunity",
    "MovementDirection",
    "OddsSnapshot",
    "SideMovement",
    "Movement",
    "QuoteMovement",
    "Sportsbook",
    "SportsbookRegistry",
    "registry",
]
