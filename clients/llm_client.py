"""
Classification client for the OpenAI Vision API.

FROZEN PROMPT AND SCHEMA: the model may only answer from the supplied
manifest of reference profiles.

CLOSED-SET DESIGN NOTE:
- The manifest carries id, names, invasive flag and sample count per profile.
  Reference images are never sent, which keeps request size bounded.
- The response is constrained by a strict JSON schema and validated again on
  receipt. Anything that does not match the schema exactly is rejected as
  MALFORMED_RESPONSE; nothing is coerced.
- On no match the model must answer with the "no match" / "unknown"
  sentinels, and confidence then means "confidence the specimen is ABSENT
  from the manifest" rather than a match score.

No retries and no caching: identical images submitted twice are two calls.
"""

import json
import os
from typing import Any, Dict, List, Optional, Sequence

import openai
from dotenv import load_dotenv
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from clients.errors import ClassificationError, ErrorKind
from clients.image_source import EncodedImage
from config import CONFIG, get_logger, Timer
from models.analysis_record import ClassificationOutcome, NO_MATCH_NAME, UNKNOWN_PROFILE_ID
from models.plant_profile import ReferenceProfile

# Load environment variables
load_dotenv()


# =============================================================================
# FROZEN PROMPT - Locked so every call is judged by the same rules
# =============================================================================

SYSTEM_DIRECTIVE = (
    "You identify plants strictly against a private reference database. "
    "The database supplied by the user is your only ground truth. "
    "Ignore any broader botanical or world knowledge when choosing a match."
)

FROZEN_PROMPT = """Identify the plant in the attached image by matching it ONLY to the reference profiles listed below.

Rules:
1. Use ONLY the profiles below as ground truth. Do NOT identify the plant from outside knowledge.
2. If the plant matches a profile, copy that profile's commonName, scientificName, isInvasive and id into matchedName, scientificName, isInvasive and matchedProfileId, and set confidence to your confidence in the match.
3. If the plant matches NO profile, set matchedName to "{no_match}", matchedProfileId to "{unknown}", scientificName to "N/A" and isInvasive to false.
4. For a "{no_match}" answer, confidence is the probability that the specimen is NOT any of the profiles below (1.0 = certainly absent from the database). It is not a match score.
5. explanation: why it matches the chosen profile, or why it matches none of them.

REFERENCE PROFILES:
{manifest}
"""

SCHEMA_NAME = "plant_match"

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "matchedName": {
            "type": "string",
            "description": f'Common name of the matched profile, or "{NO_MATCH_NAME}".',
        },
        "scientificName": {
            "type": "string",
            "description": 'Scientific name from the matched profile, or "N/A".',
        },
        "isInvasive": {
            "type": "boolean",
            "description": "Invasive flag from the matched profile; false on no match.",
        },
        "confidence": {
            "type": "number",
            "description": (
                "0 to 1. Match confidence, or on no match the confidence that "
                "the specimen is absent from the profiles."
            ),
        },
        "explanation": {
            "type": "string",
            "description": "Reasoning for the match or for rejecting every profile.",
        },
        "matchedProfileId": {
            "type": "string",
            "description": f'Id of the matched profile, or "{UNKNOWN_PROFILE_ID}".',
        },
    },
    "required": [
        "matchedName", "scientificName", "isInvasive",
        "confidence", "explanation", "matchedProfileId",
    ],
    "additionalProperties": False,
}


# =============================================================================
# MANIFEST AND RESPONSE VALIDATION
# =============================================================================

def build_manifest(profiles: Sequence[ReferenceProfile]) -> List[dict]:
    """Image-free manifest entries for every profile, in order."""
    return [p.manifest_entry() for p in profiles]


def build_messages(image: EncodedImage, manifest: List[dict], detail: str) -> List[dict]:
    """Chat messages for one classification request."""
    prompt = FROZEN_PROMPT.format(
        no_match=NO_MATCH_NAME,
        unknown=UNKNOWN_PROFILE_ID,
        manifest=json.dumps(manifest, indent=2),
    )
    return [
        {"role": "system", "content": SYSTEM_DIRECTIVE},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {
                    "url": image.data_url(),
                    "detail": detail
                }}
            ]
        },
    ]


class OutcomePayload(BaseModel):
    """Wire shape of the classifier response. Strict: no coercion, no extras."""

    model_config = ConfigDict(extra="forbid", strict=True)

    matchedName: str
    scientificName: str
    isInvasive: bool
    confidence: float = Field(ge=0.0, le=1.0)
    explanation: str
    matchedProfileId: str


def parse_outcome(content: Optional[str], profiles: Sequence[ReferenceProfile]) -> ClassificationOutcome:
    """
    Validate a raw response body against the outcome schema.

    Args:
        content: Raw message content from the classifier
        profiles: Profiles the request was built from

    Returns:
        ClassificationOutcome

    Raises:
        ClassificationError: MALFORMED_RESPONSE on any deviation
    """
    if content is None or not content.strip():
        raise ClassificationError(ErrorKind.MALFORMED_RESPONSE, "empty response")

    try:
        payload = OutcomePayload.model_validate_json(content)
    except ValidationError as e:
        raise ClassificationError(
            ErrorKind.MALFORMED_RESPONSE,
            f"{e.error_count()} schema error(s): {e.errors()[0]['msg']}"
        ) from e

    by_id = {p.id: p for p in profiles}
    is_unknown = payload.matchedProfileId == UNKNOWN_PROFILE_ID
    if not is_unknown and payload.matchedProfileId not in by_id:
        raise ClassificationError(
            ErrorKind.MALFORMED_RESPONSE,
            f"matchedProfileId {payload.matchedProfileId!r} is not in the manifest"
        )
    if is_unknown != (payload.matchedName == NO_MATCH_NAME):
        raise ClassificationError(
            ErrorKind.MALFORMED_RESPONSE,
            "no-match sentinels must be used together"
        )

    # A match must echo its profile exactly
    if not is_unknown:
        profile = by_id[payload.matchedProfileId]
        mismatched = [
            key for key, sent, expected in (
                ("matchedName", payload.matchedName, profile.common_name),
                ("scientificName", payload.scientificName, profile.scientific_name),
                ("isInvasive", payload.isInvasive, profile.is_invasive),
            )
            if sent != expected
        ]
        if mismatched:
            raise ClassificationError(
                ErrorKind.MALFORMED_RESPONSE,
                f"{', '.join(mismatched)} disagree with profile {profile.id!r}"
            )

    return ClassificationOutcome(
        matched_name=payload.matchedName,
        scientific_name=payload.scientificName,
        is_invasive=payload.isInvasive,
        confidence=payload.confidence,
        explanation=payload.explanation,
        matched_profile_id=payload.matchedProfileId,
    )


# =============================================================================
# CLASSIFICATION CLIENT
# =============================================================================

class ClassificationClient:
    """
    OpenAI Vision client constrained to a closed set of reference profiles.

    Attributes:
        client: AsyncOpenAI client (or any object with the same
            chat.completions.create coroutine)
        model: Model identifier to use
    """

    def __init__(self, client: Optional[Any] = None):
        """Initialize with API key from environment unless a client is given."""
        if client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise RuntimeError(
                    "OPENAI_API_KEY not found.\n"
                    "To fix this:\n"
                    "  1. Create a .env file in the project root\n"
                    "  2. Add this line: OPENAI_API_KEY=sk-your-key-here\n"
                    "  Or set the environment variable directly:\n"
                    "  - Windows: set OPENAI_API_KEY=sk-your-key-here\n"
                    "  - Linux/Mac: export OPENAI_API_KEY=sk-your-key-here"
                )
            client = AsyncOpenAI(api_key=api_key)

        self.client = client
        self.model = CONFIG.llm_model
        self.detail = CONFIG.llm_image_detail
        self.temperature = CONFIG.llm_temperature

    async def classify(
        self,
        image: EncodedImage,
        profiles: Sequence[ReferenceProfile]
    ) -> ClassificationOutcome:
        """
        Match one image against the reference profiles.

        Args:
            image: Encoded image to identify
            profiles: Non-empty snapshot of reference profiles (read only)

        Returns:
            Validated ClassificationOutcome

        Raises:
            ClassificationError: EMPTY_DATABASE before any call when profiles
                is empty; TRANSPORT on API/network failure;
                MALFORMED_RESPONSE when the answer fails validation
        """
        if not profiles:
            raise ClassificationError(
                ErrorKind.EMPTY_DATABASE,
                "training database is empty; add plant profiles first"
            )

        logger = get_logger()
        manifest = build_manifest(profiles)

        raw_response = ""
        outcome: Optional[ClassificationOutcome] = None
        error: Optional[ClassificationError] = None

        with Timer("llm_classify") as timer:
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=build_messages(image, manifest, self.detail),
                    response_format={
                        "type": "json_schema",
                        "json_schema": {
                            "name": SCHEMA_NAME,
                            "strict": True,
                            "schema": RESPONSE_SCHEMA,
                        },
                    },
                    max_tokens=CONFIG.llm_max_tokens,
                    temperature=self.temperature
                )
                choices = getattr(response, "choices", None) or []
                raw_response = choices[0].message.content if choices else ""
                outcome = parse_outcome(raw_response, profiles)

            except openai.APIError as e:
                error = ClassificationError(ErrorKind.TRANSPORT, f"{type(e).__name__}: {e}")
                error.__cause__ = e

            except ClassificationError as e:
                error = e

        logger.log_llm_call(
            image=image.name,
            profile_count=len(profiles),
            raw_response=raw_response or "",
            parsed_result=outcome.to_dict() if outcome else None,
            duration_ms=timer.duration_ms,
            error=str(error) if error else None
        )

        if error is not None:
            raise error
        return outcome


# =============================================================================
# MODULE-LEVEL CLIENT
# =============================================================================

_client: Optional[ClassificationClient] = None


def get_llm_client() -> ClassificationClient:
    """
    Get the shared classification client.
    Created on first use so the API key is only required when classifying.
    """
    global _client
    if _client is None:
        _client = ClassificationClient()
    return _client
