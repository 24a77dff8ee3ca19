"""Service to load the card and perk catalog from YAML files into the database."""
import logging
from pathlib import Path

import yaml
from sqlalchemy.orm import Session

from perkcycle.config import get_settings
from perkcycle.models.catalog import RESET_CALENDAR, RESET_POLICIES, CardProduct, PerkDefinition

logger = logging.getLogger(__name__)

PERIOD_ALIASES = {
    "monthly": 1,
    "quarterly": 3,
    "semi_annual": 6,
    "semi-annual": 6,
    "annual": 12,
}


def load_catalog(db: Session, catalog_dir: Path | None = None) -> list[CardProduct]:
    """Load all card files from YAML and upsert them into the catalog.

    Returns list of loaded/updated CardProduct objects.
    """
    catalog_dir = catalog_dir or get_settings().catalog_dir
    if not catalog_dir.exists():
        logger.warning(f"Catalog directory not found: {catalog_dir}")
        return []

    loaded_cards = []

    for yaml_file in sorted(catalog_dir.glob("*.yaml")):
        try:
            card = _load_single_card(db, yaml_file)
            if card:
                loaded_cards.append(card)
        except (OSError, KeyError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Failed to load card catalog from {yaml_file}: {e}")

    db.commit()
    logger.info(f"Loaded {len(loaded_cards)} card products")
    return loaded_cards


def _period_months(perk_data: dict) -> int:
    if "period_months" in perk_data:
        period_months = int(perk_data["period_months"])
    else:
        period = perk_data.get("period", "monthly")
        if period not in PERIOD_ALIASES:
            raise ValueError(f"Unknown period: {period}")
        period_months = PERIOD_ALIASES[period]
    if period_months < 1:
        raise ValueError(f"Invalid period_months: {period_months}")
    return period_months


def _load_single_card(db: Session, yaml_path: Path) -> CardProduct | None:
    """Load a single card product and its perks from a YAML file."""
    with open(yaml_path, "r") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        logger.warning(f"Card file is empty or malformed: {yaml_path}")
        return None

    slug = data.get("slug")
    if not slug:
        logger.warning(f"Card file missing slug: {yaml_path}")
        return None

    # Validate every perk before touching the session
    perks = [_perk_fields(perk_data) for perk_data in data.get("perks") or []]

    card = db.query(CardProduct).filter(CardProduct.slug == slug).first()
    if card:
        card.name = data.get("name", card.name)
        card.issuer = data.get("issuer", card.issuer)
        card.annual_fee = data.get("annual_fee", card.annual_fee)
        logger.debug(f"Updated card product: {slug}")
    else:
        card = CardProduct(
            slug=slug,
            name=data.get("name", slug),
            issuer=data.get("issuer", "Unknown"),
            annual_fee=data.get("annual_fee", 0),
        )
        db.add(card)
        db.flush()
        logger.debug(f"Created card product: {slug}")

    for perk_slug, fields in perks:
        _upsert_perk(db, card, perk_slug, fields)

    return card


def _perk_fields(perk_data: dict) -> tuple[str, dict]:
    perk_slug = perk_data["slug"]
    reset_policy = perk_data.get("reset_policy", RESET_CALENDAR)
    if reset_policy not in RESET_POLICIES:
        raise ValueError(f"Unknown reset policy for {perk_slug}: {reset_policy}")

    return perk_slug, {
        "name": perk_data.get("name", perk_slug),
        "value": float(perk_data.get("value", 0)),
        "period_months": _period_months(perk_data),
        "reset_policy": reset_policy,
        "description": perk_data.get("description"),
    }


def _upsert_perk(db: Session, card: CardProduct, perk_slug: str, fields: dict) -> PerkDefinition:
    perk = db.query(PerkDefinition).filter(
        PerkDefinition.card_product_id == card.id,
        PerkDefinition.slug == perk_slug,
    ).first()
    if perk:
        for name, value in fields.items():
            setattr(perk, name, value)
    else:
        perk = PerkDefinition(card_product_id=card.id, slug=perk_slug, **fields)
        db.add(perk)
    return perk


def get_card_products(db: Session) -> list[CardProduct]:
    """Get all card products from the catalog."""
    return db.query(CardProduct).order_by(CardProduct.name).all()
