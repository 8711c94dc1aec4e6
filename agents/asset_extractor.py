"""Asset Extractor Agent - Finds characters, locations and items in a text unit"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from core.models.storyboard import Asset, GlobalStyle
from .base import StudioAgent

logger = logging.getLogger(__name__)


ASSET_SCHEMA = {
    "type": "object",
    "properties": {
        "assets": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "type": {"type": "string", "enum": ["character", "location", "item"]},
                    "parentId": {"type": "string"},
                },
                "required": ["id", "name", "description", "type"],
            },
        }
    },
}


def asset_instruction(language: str, existing: Sequence[Asset]) -> str:
    known = "\n".join(f"- {a.asset_id}: {a.name}" for a in existing) or "(none)"
    return (
        "You are a casting and location scout. List every recurring character, location "
        "and important item in the text with a purely visual description.\n"
        "Reuse the id of a known asset when the text refers to it. A costume or age change "
        "of a known character is a new asset whose parentId is the base asset id.\n"
        f"Known assets:\n{known}\n"
        f"Write names and descriptions in {language}. Return JSON: {{\"assets\": [...]}}"
    )


@dataclass
class ExtractionResult:
    """Output of one extraction pass"""
    visual_dna: str = ""
    assets: List[Asset] = field(default_factory=list)


class AssetExtractorAgent(StudioAgent):
    """
    Two calls per unit:
    1. visual DNA for the global style (failure is tolerated)
    2. the asset list (failure propagates to the caller)
    """

    async def extract(
        self,
        text: str,
        existing_assets: Sequence[Asset] = (),
        style: Optional[GlobalStyle] = None,
        language: Optional[str] = None,
    ) -> ExtractionResult:
        style = style or GlobalStyle()
        language = language or self.settings.language

        visual_dna = await self._analyze_visual_dna(style, language)

        data = await self._query_json(
            text,
            asset_instruction(language, existing_assets),
            ASSET_SCHEMA,
            fallback={"assets": []},
            label="asset extraction",
        )
        raw_assets = data if isinstance(data, list) else (data or {}).get("assets", [])
        assets = self._normalize(raw_assets)
        logger.info(f"Extracted {len(assets)} assets")
        return ExtractionResult(visual_dna=visual_dna, assets=assets)

    def _normalize(self, raw_assets) -> List[Asset]:
        assets: List[Asset] = []
        seen = set()
        for item in raw_assets or []:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            asset = Asset.from_dict(item)
            if not asset.asset_id:
                asset.asset_id = f"asset_{uuid.uuid4().hex[:8]}"
            if asset.asset_id in seen:
                continue
            seen.add(asset.asset_id)
            assets.append(asset)
        return assets
