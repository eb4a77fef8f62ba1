"""Topics the analyzer asks about, one model request each."""

from typing import Tuple

from ..models import TopicDefinition, topic_slug

__all__ = ["DEFAULT_TOPICS", "topic_slug"]

DEFAULT_TOPICS: Tuple[TopicDefinition, ...] = (
    TopicDefinition(
        "Ukraine Conflict",
        "Support for Ukraine, condemnation of Russia, sanctions, military aid",
    ),
    TopicDefinition(
        "Israel/Gaza Conflict",
        "Support for Israel, support for Palestinians, ceasefire calls, humanitarian aid",
    ),
    TopicDefinition(
        "Iran",
        "Nuclear program concerns, sanctions, diplomatic relations, regional tensions",
    ),
    TopicDefinition(
        "Climate Change",
        "Paris Agreement, net zero commitments, climate finance, green transition",
    ),
    TopicDefinition(
        "Human Rights",
        "Democracy promotion, authoritarian criticism, minority rights, women's rights",
    ),
    TopicDefinition(
        "Sanctions",
        "Economic sanctions, trade restrictions, financial penalties, embargo measures",
    ),
    TopicDefinition(
        "Tariffs",
        "Trade tariffs, customs duties, import taxes, trade barriers, protectionist measures",
    ),
    TopicDefinition(
        "Artificial Intelligence",
        "AI governance, regulation, ethics, development policies, international cooperation",
    ),
)
