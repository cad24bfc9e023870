"""Product content validation: AI classification with a manual override."""

import logging
from dataclasses import dataclass
from typing import Any

from supabase import Client

from src.api.middleware.error_handler import InvalidInputError, ProductNotFoundError
from src.core.config import Settings, get_settings
from src.core.openai import TimedOpenAIClient, get_openai_client
from src.core.stripe import quantize_money
from src.core.supabase import get_supabase_client
from src.models.product import Product, ValidationStatus

logger = logging.getLogger(__name__)

CONTENT_FIELDS = ("name", "description")
EDITABLE_FIELDS = ("name", "description", "price", "inventory", "status")

# Model answers mapped onto stored statuses
VERDICTS = {
    "blocked": ValidationStatus.BLOCKED,
    "checked": ValidationStatus.CHECKED,
    "needs human validation": ValidationStatus.NEEDS_REVIEW,
}

CLASSIFIER_PROMPT = """You review product listings for an online marketplace. Classify the product as:
- "blocked": it violates marketplace policy (prohibited items, inappropriate content)
- "checked": it is safe and appropriate to sell
- "needs human validation": it is unclear or borderline and a person should review it

Answer with exactly one of: "blocked", "checked", "needs human validation"."""


@dataclass(frozen=True)
class AutoValidation:
    """Status set by the classifier."""

    status: ValidationStatus


@dataclass(frozen=True)
class ManualOverride:
    """Status pinned by a human; the classifier leaves it alone."""

    status: ValidationStatus


ValidationState = AutoValidation | ManualOverride


@dataclass(frozen=True)
class ProductEdit:
    """What an edit changes, as far as validation is concerned."""

    content_changed: bool = False
    manually_verified: bool | None = None
    manual_status: ValidationStatus | None = None


def parse_verdict(answer: str | None) -> ValidationStatus | None:
    """Map a classifier answer to a status, or None if it is not one of the three."""
    if not answer:
        return None
    return VERDICTS.get(answer.strip().strip("\"'. ").lower())


def state_from_product(product: dict[str, Any]) -> ValidationState:
    """Read the validation state stored on a products row."""
    raw = product.get("validation_status") or ValidationStatus.PENDING.value
    status = VERDICTS.get(raw)
    if status is None:
        try:
            status = ValidationStatus(raw)
        except ValueError:
            logger.warning("Unknown validation status %r on product %s", raw, product.get("id"))
            status = ValidationStatus.PENDING

    if product.get("manually_verified"):
        return ManualOverride(status)
    return AutoValidation(status)


def _turns_override_off(current: ValidationState, edit: ProductEdit) -> bool:
    return isinstance(current, ManualOverride) and edit.manually_verified is False


def _stays_manual(current: ValidationState, edit: ProductEdit) -> bool:
    if edit.manually_verified is True:
        return True
    return isinstance(current, ManualOverride) and edit.manually_verified is not False


def requires_classification(current: ValidationState, edit: ProductEdit) -> bool:
    """Return True if the edit should send the product to the classifier."""
    if _stays_manual(current, edit):
        return False
    return (
        _turns_override_off(current, edit)
        or edit.content_changed
        or current.status == ValidationStatus.PENDING
    )


def next_validation_state(
    current: ValidationState,
    edit: ProductEdit,
    verdict: ValidationStatus | None = None,
) -> ValidationState:
    """Compute the validation state after an edit.

    Args:
        current: State before the edit.
        edit: What the edit changes.
        verdict: Classifier result, used only when classification is required.

    Returns:
        ValidationState: New state. A required classification without a
            verdict yields ``needs_review``.
    """
    if _stays_manual(current, edit):
        return ManualOverride(edit.manual_status or current.status)

    if requires_classification(current, edit):
        return AutoValidation(verdict or ValidationStatus.NEEDS_REVIEW)

    return current


class ProductValidationService:
    """Service for classifying product content and applying product edits."""

    def __init__(
        self,
        supabase_client: Client | None = None,
        openai_client: TimedOpenAIClient | None = None,
        settings: Settings | None = None,
    ):
        """Initialize product validation service.

        Args:
            supabase_client: Optional Supabase client for testing.
            openai_client: Optional OpenAI client wrapper for testing.
            settings: Optional settings for testing.
        """
        self._supabase_client = supabase_client
        self._openai_client = openai_client
        self.settings = settings or get_settings()

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    @property
    def openai(self) -> TimedOpenAIClient:
        """Get OpenAI client."""
        if self._openai_client is None:
            self._openai_client = get_openai_client()
        return self._openai_client

    async def classify(self, product: dict[str, Any]) -> ValidationStatus:
        """Ask the model whether a product may be listed.

        Any failure, including an unexpected answer, yields ``needs_review``.

        Args:
            product: Product fields; name, description and price are sent.

        Returns:
            ValidationStatus: Classifier verdict.
        """
        if not self.settings.enable_ai_validation or not self.settings.openai_api_key:
            logger.warning("AI validation disabled, product %s needs review", product.get("id"))
            return ValidationStatus.NEEDS_REVIEW

        user_message = (
            f"Name: {product.get('name') or ''}\n"
            f"Description: {product.get('description') or 'No description'}\n"
            f"Price: {product.get('price') or 0}"
        )

        try:
            answer = self.openai.complete(
                [
                    {"role": "system", "content": CLASSIFIER_PROMPT},
                    {"role": "user", "content": user_message},
                ],
                max_tokens=10,
                temperature=0,
            )
        except Exception as e:
            logger.error("Product classification failed for %s: %s", product.get("id"), e)
            return ValidationStatus.NEEDS_REVIEW

        verdict = parse_verdict(answer)
        if verdict is None:
            logger.warning("Unexpected classifier answer %r for product %s", answer, product.get("id"))
            return ValidationStatus.NEEDS_REVIEW

        logger.info("Product %s classified as %s", product.get("id"), verdict.value)
        return verdict

    async def apply_edit(self, product_id: str, changes: dict[str, Any]) -> Product:
        """Apply a vendor or admin edit and the resulting validation state.

        Args:
            product_id: Product UUID.
            changes: Fields to change; ``manually_verified`` and
                ``validation_status`` steer the override.

        Returns:
            Product: The updated products row.

        Raises:
            ProductNotFoundError: If the product does not exist.
            InvalidInputError: If a validation status is given without the
                manual override.
        """
        result = (
            self.supabase.table("products")
            .select("*")
            .eq("id", str(product_id))
            .maybe_single()
            .execute()
        )
        product = result.data if result and result.data else None
        if not product:
            raise ProductNotFoundError()

        current = state_from_product(product)
        manual_status = changes.get("validation_status")
        edit = ProductEdit(
            content_changed=any(
                field in changes and changes[field] != product.get(field) for field in CONTENT_FIELDS
            ),
            manually_verified=changes.get("manually_verified"),
            manual_status=ValidationStatus(manual_status) if manual_status else None,
        )
        if edit.manual_status is not None and not _stays_manual(current, edit):
            raise InvalidInputError(
                "validation_status can only be set on a manually verified product",
                details=[
                    {
                        "loc": ["validation_status"],
                        "msg": "Set manually_verified to true to pin a validation status",
                        "type": "manual_override_required",
                    }
                ],
            )

        verdict = None
        if requires_classification(current, edit):
            verdict = await self.classify({**product, **changes})

        new_state = next_validation_state(current, edit, verdict)

        update: dict[str, Any] = {
            field: changes[field] for field in EDITABLE_FIELDS if field in changes
        }
        if "price" in update:
            update["price"] = str(quantize_money(update["price"]))
        if "status" in update:
            update["status"] = getattr(update["status"], "value", update["status"])
        update["validation_status"] = new_state.status.value
        update["manually_verified"] = isinstance(new_state, ManualOverride)

        response = (
            self.supabase.table("products")
            .update(update)
            .eq("id", str(product_id))
            .execute()
        )

        logger.info(
            "Product %s edited, validation %s -> %s",
            product_id,
            current,
            new_state,
        )
        if response.data:
            return response.data[0]
        return {**product, **update}


def get_product_validation_service() -> ProductValidationService:
    """Get product validation service instance.

    Returns:
        ProductValidationService: Product validation service instance.
    """
    return ProductValidationService()
