"""
AI-assisted task creation.

A free-text description is turned into a task-creation payload
(`schemas.TaskSuggestion`) by a `SuggestionSource`:

- `RemoteSuggestionSource` asks a hosted language model (Hugging Face
  inference API) for a JSON task and fails with ExternalServiceError on any
  transport, HTTP or parsing problem.
- `LocalSuggestionSource` derives the same payload with keyword and regex
  heuristics; it never fails.
- `ResilientSuggestionSource` tries the remote source and falls back to the
  local one on any error.

The payload is then submitted through `task_lifecycle.create_task`; this module
never writes to the database itself.
"""

import json
import logging
import re
from typing import List, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

import settings
from errors import ExternalServiceError
from models import Task, TaskPriority, TaskStatus
import schemas
import task_lifecycle

logger = logging.getLogger(__name__)

AI_TAG = "généré_par_ia"
TITLE_MAX_LENGTH = 60

ACTION_VERBS = [
    "créer", "développer", "implémenter", "concevoir", "ajouter",
    "modifier", "corriger", "tester", "optimiser",
]

# keyword -> complexity weight (each point is worth 30 minutes)
COMPLEXITY_KEYWORDS = {
    "complexe": 2,
    "difficile": 2,
    "simple": -1,
    "facile": -1,
    "rapide": -1,
    "long": 1,
    "détaillé": 1,
    "approfondi": 2,
}

TAG_VOCABULARY = [
    "design", "développement", "backend", "frontend", "test", "debug", "ux", "ui",
    "documentation", "optimisation", "api", "database", "sécurité", "performance",
    "mobile", "responsive", "login", "authentification", "formulaire",
]

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 480  # 8h working day

TITLE_MARKER_RE = re.compile(r"\btitle\s*[:=]\s*([^.,;!?\n]+)", re.IGNORECASE)
FIRST_SENTENCE_RE = re.compile(r"^([^.!?]+[.!?])")
ESTIMATE_MARKER_RE = re.compile(
    r"\bestim(?:ation|é)\s*[:=]\s*(\d+)\s*(min\w*|heures?|h|jours?)", re.IGNORECASE
)
ASSIGNEE_RE = re.compile(
    r"\b(?i:assign(?:er|é|e))\s+(?i:à|a)\s+([A-ZÀ-Ý][a-zà-ÿ]+(?: [A-ZÀ-Ý][a-zà-ÿ]+)*)"
)
CODE_FENCE_RE = re.compile(r"```json\s*|\s*```")
JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class SuggestionSource(Protocol):
    def suggest(self, description: str) -> schemas.TaskSuggestion:
        ...


def _ucfirst(text: str) -> str:
    return text[:1].upper() + text[1:]


def _shorten(text: str, limit: int = TITLE_MAX_LENGTH) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


# ============== Local heuristics ==============


def extract_title(description: str) -> str:
    """
    Pick a short title: explicit `title:` marker, then an action-verb clause,
    then the first sentence, then the first five words.
    """
    match = TITLE_MARKER_RE.search(description)
    if match:
        return _shorten(_ucfirst(match.group(1).strip()))

    for verb in ACTION_VERBS:
        match = re.search(rf"\b{re.escape(verb)}\s+([^.!?]+[.!?]?)", description, re.IGNORECASE)
        if match:
            return _shorten(_ucfirst(match.group(0).strip()))

    match = FIRST_SENTENCE_RE.search(description)
    if match:
        return _shorten(_ucfirst(match.group(1).strip()))

    words = description.split()
    title = _ucfirst(" ".join(words[:5]).strip())
    if len(words) > 5:
        return title[:TITLE_MAX_LENGTH] + "..."
    return _shorten(title)


def extract_assignee_name(description: str) -> Optional[str]:
    """Capitalized name following "assigner à" / "assigné à"."""
    match = ASSIGNEE_RE.search(description)
    return match.group(1) if match else None


def extract_task_type(description: str) -> Optional[str]:
    text = description.lower()
    if "page" in text and ("login" in text or "connexion" in text):
        return "Page de connexion"
    if "page" in text and ("register" in text or "inscription" in text):
        return "Page d'inscription"
    if "api" in text or "endpoint" in text:
        return "Développement API"
    if "bug" in text or "erreur" in text:
        return "Correction de bug"
    if "test" in text:
        return "Tests"
    if "documentation" in text or "doc" in text:
        return "Documentation"
    return None


def determine_priority(description: str) -> TaskPriority:
    text = description.lower()
    if "urgent" in text or "critique" in text:
        return TaskPriority.urgente
    if "important" in text or "prioritaire" in text:
        return TaskPriority.haute
    if "simple" in text or "facile" in text:
        return TaskPriority.basse
    return TaskPriority.moyenne


def estimate_time(description: str) -> int:
    """
    Estimated minutes: explicit `estimation: N min|h|jour` marker, otherwise a
    base from the description length adjusted by complexity keywords.

    Example:
        >>> estimate_time("estimation: 2h pour la migration")
        120
    """
    match = ESTIMATE_MARKER_RE.search(description)
    if match:
        value = int(match.group(1))
        unit = match.group(2).lower()
        if unit.startswith("min"):
            return value
        if unit.startswith("jour"):
            return value * MINUTES_PER_DAY
        return value * MINUTES_PER_HOUR

    length = len(description)
    if length < 50:
        base_time = 30
    elif length < 150:
        base_time = 60
    elif length < 300:
        base_time = 120
    else:
        base_time = 240

    text = description.lower()
    complexity = sum(weight for keyword, weight in COMPLEXITY_KEYWORDS.items() if keyword in text)

    return max(15, base_time + complexity * 30)


def extract_tags(description: str) -> List[str]:
    text = description.lower()
    tags = [tag for tag in TAG_VOCABULARY if tag in text]

    if "page" in text and ("login" in text or "connexion" in text):
        tags.append("authentification")
    if "base de données" in text or "database" in text or "sql" in text:
        tags.append("database")

    tags.append(AI_TAG)
    return list(dict.fromkeys(tags))


class LocalSuggestionSource:
    """Deterministic, offline task suggestion."""

    def suggest(self, description: str) -> schemas.TaskSuggestion:
        logger.info("Generating task suggestion locally")

        enhanced_description = description
        assignee_name = extract_assignee_name(description)
        if assignee_name:
            enhanced_description += f"\n\nAssigné à: {assignee_name}"
        task_type = extract_task_type(description)
        if task_type:
            enhanced_description += f"\n\nType de tâche: {task_type}"

        return schemas.TaskSuggestion(
            title=extract_title(description),
            description=enhanced_description,
            priority=determine_priority(description),
            estimated_time=estimate_time(description),
            tags=extract_tags(description),
        )


# ============== Remote model ==============


def build_prompt(description: str) -> str:
    return (
        "Tu es un assistant spécialisé dans la gestion de projet. "
        f"Analyse la description suivante et génère une tâche structurée: {description}\n\n"
        "Réponds UNIQUEMENT avec un JSON valide contenant ces champs:\n"
        "- title: un titre court et descriptif pour la tâche\n"
        "- description: une description détaillée de la tâche\n"
        "- priority: la priorité (basse, moyenne, haute, urgente)\n"
        "- estimated_time: le temps estimé en minutes (nombre entier)\n"
        "- tags: un tableau de tags pertinents\n"
        "Ne mets aucun texte avant ou après le JSON. Assure-toi que le JSON est valide."
    )


def parse_model_output(content: str, description: str) -> schemas.TaskSuggestion:
    """
    Extract the task JSON object from raw model output.

    Code fences are stripped and the outermost `{...}` region is decoded.
    Missing fields fall back to values derived from the description.

    Raises:
        ExternalServiceError: no JSON object, invalid JSON, or invalid field values
    """
    cleaned = CODE_FENCE_RE.sub("", content or "").strip()
    match = JSON_OBJECT_RE.search(cleaned)
    if not match:
        raise ExternalServiceError("No JSON object found in model response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ExternalServiceError(f"Invalid JSON in model response: {e}") from e

    if not isinstance(data, dict):
        raise ExternalServiceError("Model response JSON is not an object")

    tags = data.get("tags") or [AI_TAG]
    if isinstance(tags, str):
        tags = [tags]

    try:
        return schemas.TaskSuggestion(
            title=data.get("title") or description[:TITLE_MAX_LENGTH],
            description=data.get("description") or description,
            priority=data.get("priority") or TaskPriority.moyenne,
            estimated_time=int(data.get("estimated_time") or 60),
            tags=list(dict.fromkeys(tags)),
        )
    except (PydanticValidationError, TypeError, ValueError) as e:
        raise ExternalServiceError(f"Model response has invalid task fields: {e}") from e


class RemoteSuggestionSource:
    """Task suggestion from a hosted text-generation model."""

    def __init__(
        self,
        api_key: str,
        model_url: str = settings.HUGGINGFACE_MODEL_URL,
        timeout: float = settings.SUGGESTION_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.model_url = model_url
        self.timeout = timeout
        self.client = client

    def _post(self, body: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        if self.client is not None:
            return self.client.post(self.model_url, json=body, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.model_url, json=body, headers=headers)

    def suggest(self, description: str) -> schemas.TaskSuggestion:
        logger.info("Requesting task suggestion from remote model")
        body = {
            "inputs": build_prompt(description),
            "parameters": {"max_new_tokens": 800, "temperature": 0.7, "return_full_text": False},
        }

        try:
            response = self._post(body)
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Model request failed: {e}") from e

        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Model API error: {response.status_code}", {"body": response.text[:500]}
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalServiceError("Invalid JSON response from model API") from e

        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            content = payload[0].get("generated_text", "")
        elif isinstance(payload, dict):
            content = payload.get("generated_text", "")
        else:
            raise ExternalServiceError("Unexpected model response shape")

        logger.debug(f"Raw model output: {content}")
        return parse_model_output(content, description)


class ResilientSuggestionSource:
    """Try the primary source; on any failure use the fallback. Never raises from the primary."""

    def __init__(self, primary: SuggestionSource, fallback: SuggestionSource) -> None:
        self.primary = primary
        self.fallback = fallback

    def suggest(self, description: str) -> schemas.TaskSuggestion:
        try:
            return self.primary.suggest(description)
        except Exception as e:
            logger.warning(f"Remote task suggestion failed, using local fallback: {e}")
            return self.fallback.suggest(description)


def build_suggestion_source() -> SuggestionSource:
    if settings.HUGGINGFACE_API_KEY:
        return ResilientSuggestionSource(
            RemoteSuggestionSource(settings.HUGGINGFACE_API_KEY),
            LocalSuggestionSource(),
        )
    logger.debug("HUGGINGFACE_API_KEY not set, using local task suggestions only")
    return LocalSuggestionSource()


def generate_task(
    db: Session,
    request: schemas.GenerateTaskRequest,
    creator_id: Optional[str],
    source: Optional[SuggestionSource] = None,
) -> Task:
    """Suggest a task from a description and create it through the task lifecycle."""
    # Column and role are checked before any model call
    task_lifecycle.require_writable_column(db, request.column_id, creator_id)
    source = source or build_suggestion_source()

    suggestion = source.suggest(request.description)
    logger.info(f"Task suggestion ready: {suggestion.title!r} ({suggestion.priority.value})")

    payload = schemas.TaskCreate(
        column_id=request.column_id,
        title=suggestion.title,
        description=suggestion.description,
        status=TaskStatus.a_faire,
        priority=suggestion.priority,
        estimated_time=suggestion.estimated_time,
        tags=suggestion.tags,
    )
    return task_lifecycle.create_task(db, payload, creator_id)
