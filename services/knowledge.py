"""Keyword-scored agricultural knowledge used to ground assistant replies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from services.sensor_context import SensorContext

NO_KNOWLEDGE = (
    "No specific agricultural knowledge found for this query. "
    "Using general agricultural expertise."
)

STOP_WORDS = frozenset(
    ["the", "is", "at", "which", "on", "and", "or", "but", "in", "with", "to", "for", "of", "as", "by"]
)

CATEGORY_KEYWORDS = (
    ("crop_management", ("crop", "planting", "harvesting", "rotation", "variety")),
    ("pest_control", ("pest", "insect", "disease", "fungus", "spray", "control")),
    ("soil_health", ("soil", "ph", "organic", "compost", "erosion")),
    ("weather", ("weather", "rain", "temperature", "climate", "monsoon")),
    ("market_prices", ("price", "market", "sell", "msp", "cost", "profit")),
    ("fertilizers", ("fertilizer", "npk", "nitrogen", "phosphorus", "potassium", "urea")),
    ("irrigation", ("water", "irrigation", "moisture", "drip", "sprinkler")),
)
DEFAULT_CATEGORY = "crop_management"

SEARCH_TRIGGERS = (
    "search",
    "find",
    "lookup",
    "what is",
    "what are",
    "tell me about",
    "current price",
    "latest",
    "recent",
    "today",
    "now",
    "predict",
    "forecast",
    "market rate",
    "news about",
    "information on",
)


@dataclass(frozen=True)
class KnowledgeDocument:
    id: str
    title: str
    content: str
    category: str
    keywords: Tuple[str, ...]


KNOWLEDGE_BASE: Tuple[KnowledgeDocument, ...] = (
    KnowledgeDocument(
        id="crop_rotation_1",
        title="Crop Rotation Best Practices for Indian Agriculture",
        content=(
            "Crop rotation is essential for maintaining soil health. For rice-wheat systems in "
            "North India, follow a 3-year rotation: Rice → Wheat → Legumes (like chickpea or "
            "lentil). This helps break pest cycles, improves soil nitrogen through legume "
            "fixation, and reduces disease pressure. In South India, rice-cotton-sugarcane "
            "rotation works well."
        ),
        category="crop_management",
        keywords=(
            "crop rotation", "soil health", "rice", "wheat", "legumes",
            "nitrogen fixation", "pest management",
        ),
    ),
    KnowledgeDocument(
        id="npk_management_1",
        title="NPK Management for Optimal Crop Growth",
        content=(
            "Nitrogen (N): Essential for leaf growth and chlorophyll. Deficiency shows as "
            "yellowing leaves. Apply 120-150 kg/ha for rice, 100-120 kg/ha for wheat. "
            "Phosphorus (P): Critical for root development and flowering. Apply 60-80 kg/ha. "
            "Potassium (K): Improves disease resistance and water regulation. Apply 40-60 kg/ha. "
            "Split application is recommended: 50% at planting, 25% at tillering, 25% at flowering."
        ),
        category="fertilizers",
        keywords=(
            "NPK", "nitrogen", "phosphorus", "potassium", "fertilizer",
            "application rates", "split application", "deficiency symptoms",
        ),
    ),
    KnowledgeDocument(
        id="soil_moisture_1",
        title="Soil Moisture Management Techniques",
        content=(
            "Optimal soil moisture for most crops is 60-80% field capacity. Below 40% indicates "
            "water stress. Above 90% can cause root rot and nutrient leaching. Use drip "
            "irrigation for 30-40% water savings. Mulching with organic matter reduces "
            "evaporation by 25-30%. Monitor soil moisture at 15cm and 30cm depths for better "
            "irrigation scheduling."
        ),
        category="irrigation",
        keywords=(
            "soil moisture", "irrigation", "field capacity", "water stress",
            "drip irrigation", "mulching", "evaporation",
        ),
    ),
    KnowledgeDocument(
        id="pest_integrated_1",
        title="Integrated Pest Management (IPM) Strategies",
        content=(
            "IPM combines biological, cultural, and chemical controls. Use pheromone traps for "
            "early pest detection. Encourage beneficial insects like ladybugs and parasitic "
            "wasps. Neem-based pesticides are effective against aphids and caterpillars. Rotate "
            "pesticide classes to prevent resistance. Economic threshold: treat only when pest "
            "population exceeds damage threshold."
        ),
        category="pest_control",
        keywords=(
            "IPM", "integrated pest management", "biological control", "pheromone traps",
            "beneficial insects", "neem", "pesticide resistance",
        ),
    ),
    KnowledgeDocument(
        id="weather_monsoon_1",
        title="Monsoon Weather Patterns and Crop Planning",
        content=(
            "Southwest monsoon (June-September) brings 70-80% of annual rainfall. Plan kharif "
            "crops (rice, cotton, sugarcane) during this period. Northeast monsoon "
            "(October-December) supports rabi crops (wheat, barley, chickpea). Use weather "
            "forecasts for irrigation scheduling. Extreme weather events are increasing - "
            "consider climate-resilient varieties."
        ),
        category="weather",
        keywords=(
            "monsoon", "kharif", "rabi", "rainfall", "weather forecast",
            "climate resilient", "seasonal planning",
        ),
    ),
    KnowledgeDocument(
        id="market_prices_1",
        title="Agricultural Market Price Trends and MSP",
        content=(
            "Minimum Support Price (MSP) provides price security for farmers. Check current MSP "
            "rates on government portals. Market prices fluctuate based on supply-demand, "
            "weather, and global trends. Use e-NAM platform for better price discovery. "
            "Post-harvest storage and value addition can increase farmer income by 15-25%."
        ),
        category="market_prices",
        keywords=(
            "MSP", "minimum support price", "market prices", "e-NAM", "price discovery",
            "post-harvest", "value addition",
        ),
    ),
)


def search_terms(query: str) -> List[str]:
    return [word for word in query.split() if len(word) > 2 and word.lower() not in STOP_WORDS]


def query_category(query: str) -> str:
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in query for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def score_document(document: KnowledgeDocument, query: str) -> int:
    """Relevance of ``document`` for an already lower-cased query."""
    score = 0
    if query in document.title.lower():
        score += 10
    score += 5 * sum(1 for keyword in document.keywords if keyword.lower() in query)
    content = document.content.lower()
    score += 2 * sum(1 for term in search_terms(query) if term in content)
    if query_category(query) == document.category:
        score += 3
    return score


def retrieve(
    query: str,
    max_results: int = 3,
    documents: Optional[Iterable[KnowledgeDocument]] = None,
) -> str:
    lowered = query.lower()
    scored = [
        (score_document(document, lowered), index, document)
        for index, document in enumerate(documents if documents is not None else KNOWLEDGE_BASE)
    ]
    ranked = sorted(
        (item for item in scored if item[0] > 0),
        key=lambda item: (-item[0], item[1]),
    )[:max_results]
    if not ranked:
        return NO_KNOWLEDGE
    sections = [f"**{document.title}**\n{document.content}\n" for _, _, document in ranked]
    return "AGRICULTURAL KNOWLEDGE CONTEXT:\n" + "\n".join(sections)


def contains_search_triggers(query: str) -> bool:
    lowered = query.lower()
    return any(trigger in lowered for trigger in SEARCH_TRIGGERS)


def moisture_status(moisture: float) -> str:
    if moisture < 20:
        return "Very Dry - Immediate irrigation needed"
    if moisture < 40:
        return "Dry - Irrigation recommended"
    if moisture < 60:
        return "Moderate - Monitor closely"
    if moisture < 80:
        return "Good - Optimal range"
    return "Very Wet - Check drainage"


def sensor_context_block(context: SensorContext) -> str:
    lines = [
        "CURRENT SENSOR READINGS:",
        f"Location: {context.location_name}",
        f"Soil Moisture: {context.soil_moisture}% ({moisture_status(context.soil_moisture)})",
        f"NPK Levels: N={context.nitrogen}ppm, P={context.phosphorus}ppm, K={context.potassium}ppm",
        f"Humidity: {context.humidity}%",
        "",
    ]
    if context.soil_moisture < 40:
        lines.append("ALERT: Low soil moisture detected. Consider irrigation.")
    if context.soil_moisture > 80:
        lines.append("ALERT: High soil moisture detected. Check drainage.")
    if context.npk_average < 50:
        lines.append("ALERT: Low NPK levels detected. Consider fertilizer application.")
    return "\n".join(lines) + "\n"
