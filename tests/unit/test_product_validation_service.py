"""Unit tests for product validation."""

from unittest.mock import MagicMock

import pytest

from src.api.middleware.error_handler import InvalidInputError, ProductNotFoundError
from src.core.openai import TimedOpenAIClient
from src.models.product import ValidationStatus
from src.services.product_validation_service import (
    AutoValidation,
    ManualOverride,
    ProductEdit,
    ProductValidationService,
    next_validation_state,
    parse_verdict,
    requires_classification,
    state_from_product,
)


@pytest.fixture
def validation_service(fake_supabase, mock_openai, test_settings) -> ProductValidationService:
    """Create ProductValidationService with the in-memory store and a mock model."""
    return ProductValidationService(
        supabase_client=fake_supabase,
        openai_client=mock_openai,
        settings=test_settings,
    )


class TestParseVerdict:
    """Tests for parse_verdict."""

    @pytest.mark.parametrize(
        ("answer", "expected"),
        [
            ("checked", ValidationStatus.CHECKED),
            ('"Blocked".', ValidationStatus.BLOCKED),
            ("'checked.'", ValidationStatus.CHECKED),
            ("Needs human validation.\n", ValidationStatus.NEEDS_REVIEW),
            ("needs human validation", ValidationStatus.NEEDS_REVIEW),
            ("maybe", None),
            ("", None),
            (None, None),
        ],
    )
    def test_answers(self, answer, expected) -> None:
        """Test that only the three known answers are accepted."""
        assert parse_verdict(answer) is expected


class TestStateFromProduct:
    """Tests for state_from_product."""

    def test_manual_flag(self) -> None:
        """Test that manually verified rows are overrides."""
        state = state_from_product({"validation_status": "blocked", "manually_verified": True})
        assert state == ManualOverride(ValidationStatus.BLOCKED)

    def test_legacy_status_text(self) -> None:
        """Test that the classifier's raw answer stored by older rows is understood."""
        state = state_from_product({"validation_status": "needs human validation"})
        assert state == AutoValidation(ValidationStatus.NEEDS_REVIEW)

    def test_missing_status_is_pending(self) -> None:
        """Test that new rows start pending."""
        assert state_from_product({}) == AutoValidation(ValidationStatus.PENDING)


class TestTransitions:
    """Tests for the validation state machine."""

    def test_content_edit_reclassifies(self) -> None:
        """Test that changing the name or description asks the classifier again."""
        current = AutoValidation(ValidationStatus.CHECKED)
        edit = ProductEdit(content_changed=True)

        assert requires_classification(current, edit)
        assert next_validation_state(current, edit, ValidationStatus.BLOCKED) == AutoValidation(
            ValidationStatus.BLOCKED
        )

    def test_price_only_edit_keeps_status(self) -> None:
        """Test that non-content edits leave a checked product alone."""
        current = AutoValidation(ValidationStatus.CHECKED)
        edit = ProductEdit()

        assert not requires_classification(current, edit)
        assert next_validation_state(current, edit) == current

    def test_pending_product_is_classified(self) -> None:
        """Test that a never-classified product is classified on its first edit."""
        assert requires_classification(AutoValidation(ValidationStatus.PENDING), ProductEdit())

    def test_override_is_never_reclassified(self) -> None:
        """Test that content edits do not touch a manual status."""
        current = ManualOverride(ValidationStatus.CHECKED)
        edit = ProductEdit(content_changed=True)

        assert not requires_classification(current, edit)
        assert next_validation_state(current, edit, ValidationStatus.BLOCKED) == current

    def test_setting_override(self) -> None:
        """Test that an admin can pin a status."""
        current = AutoValidation(ValidationStatus.NEEDS_REVIEW)
        edit = ProductEdit(manually_verified=True, manual_status=ValidationStatus.CHECKED)

        assert next_validation_state(current, edit) == ManualOverride(ValidationStatus.CHECKED)

    def test_clearing_override_reclassifies(self) -> None:
        """Test that turning the override off hands the product back to the classifier."""
        current = ManualOverride(ValidationStatus.CHECKED)
        edit = ProductEdit(manually_verified=False)

        assert requires_classification(current, edit)
        assert next_validation_state(current, edit, ValidationStatus.BLOCKED) == AutoValidation(
            ValidationStatus.BLOCKED
        )

    def test_missing_verdict_needs_review(self) -> None:
        """Test that a required classification without a verdict needs review."""
        current = AutoValidation(ValidationStatus.CHECKED)

        assert next_validation_state(current, ProductEdit(content_changed=True)) == AutoValidation(
            ValidationStatus.NEEDS_REVIEW
        )


class TestClassify:
    """Tests for classify."""

    @pytest.mark.asyncio
    async def test_uses_model_answer(self, validation_service, mock_openai) -> None:
        """Test that the model verdict is returned."""
        mock_openai.complete.return_value = "blocked"

        verdict = await validation_service.classify({"id": "p1", "name": "Lamp", "price": "129.00"})

        assert verdict is ValidationStatus.BLOCKED
        messages = mock_openai.complete.call_args.args[0]
        assert "Name: Lamp" in messages[1]["content"]
        assert mock_openai.complete.call_args.kwargs["temperature"] == 0

    @pytest.mark.asyncio
    async def test_model_error_needs_review(self, validation_service, mock_openai) -> None:
        """Test that classifier failures never block an edit."""
        mock_openai.complete.side_effect = RuntimeError("upstream down")

        assert await validation_service.classify({"id": "p1"}) is ValidationStatus.NEEDS_REVIEW

    @pytest.mark.asyncio
    async def test_unexpected_answer_needs_review(self, validation_service, mock_openai) -> None:
        """Test that free-form answers fall back to review."""
        mock_openai.complete.return_value = "I think it is fine"

        assert await validation_service.classify({"id": "p1"}) is ValidationStatus.NEEDS_REVIEW

    @pytest.mark.asyncio
    async def test_disabled(self, fake_supabase, mock_openai, test_settings) -> None:
        """Test that disabled AI validation skips the model."""
        settings = test_settings.model_copy(update={"enable_ai_validation": False})
        service = ProductValidationService(
            supabase_client=fake_supabase, openai_client=mock_openai, settings=settings
        )

        assert await service.classify({"id": "p1"}) is ValidationStatus.NEEDS_REVIEW
        mock_openai.complete.assert_not_called()


class TestApplyEdit:
    """Tests for apply_edit."""

    @pytest.mark.asyncio
    async def test_content_edit_is_reclassified(
        self, validation_service, fake_supabase, mock_openai, lamp_product
    ) -> None:
        """Test that renaming a product stores the new verdict."""
        mock_openai.complete.return_value = "needs human validation"

        product = await validation_service.apply_edit(lamp_product["id"], {"name": "Desk Lamp XL"})

        assert product["name"] == "Desk Lamp XL"
        assert product["validation_status"] == "needs_review"
        assert product["manually_verified"] is False
        mock_openai.complete.assert_called_once()

    @pytest.mark.asyncio
    async def test_price_edit_skips_classifier(
        self, validation_service, fake_supabase, mock_openai, lamp_product
    ) -> None:
        """Test that price edits are quantized and do not reclassify."""
        product = await validation_service.apply_edit(lamp_product["id"], {"price": "99.5", "inventory": 4})

        assert product["price"] == "99.50"
        assert product["inventory"] == 4
        assert product["validation_status"] == "checked"
        mock_openai.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_manual_override(self, validation_service, fake_supabase, mock_openai, lamp_product) -> None:
        """Test that an admin block sticks through later content edits."""
        await validation_service.apply_edit(
            lamp_product["id"], {"manually_verified": True, "validation_status": "blocked"}
        )
        product = await validation_service.apply_edit(lamp_product["id"], {"description": "Now brighter"})

        assert product["validation_status"] == "blocked"
        assert product["manually_verified"] is True
        mock_openai.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_without_override_is_rejected(
        self, validation_service, fake_supabase, mock_openai, lamp_product
    ) -> None:
        """Test that a bare validation_status on an auto-validated product is refused, not dropped."""
        with pytest.raises(InvalidInputError) as exc_info:
            await validation_service.apply_edit(lamp_product["id"], {"validation_status": "blocked"})

        assert exc_info.value.details[0]["loc"] == ["validation_status"]
        assert fake_supabase.get("products", lamp_product["id"])["validation_status"] == "checked"
        mock_openai.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_change_on_overridden_product(self, validation_service, fake_supabase, lamp_product) -> None:
        """Test that an existing override accepts a new pinned status on its own."""
        fake_supabase.get("products", lamp_product["id"])["manually_verified"] = True

        product = await validation_service.apply_edit(lamp_product["id"], {"validation_status": "blocked"})

        assert product["validation_status"] == "blocked"
        assert product["manually_verified"] is True

    @pytest.mark.asyncio
    async def test_unknown_product(self, validation_service) -> None:
        """Test that editing a missing product raises ProductNotFoundError."""
        with pytest.raises(ProductNotFoundError):
            await validation_service.apply_edit("00000000-0000-0000-0000-000000000000", {"name": "x"})


class TestTimedOpenAIClient:
    """Tests for the OpenAI wrapper."""

    def test_returns_stripped_content(self) -> None:
        """Test that the first choice's text is returned."""
        raw = MagicMock()
        raw.chat.completions.create.return_value = MagicMock(
            choices=[MagicMock(message=MagicMock(content="  checked\n"))]
        )
        client = TimedOpenAIClient(raw, model="gpt-4o")

        assert client.complete([{"role": "user", "content": "hi"}], max_tokens=10) == "checked"
        assert raw.chat.completions.create.call_args.kwargs["model"] == "gpt-4o"
