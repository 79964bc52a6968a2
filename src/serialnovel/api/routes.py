"""
Flask route handlers for the serial novel API.

Routes are thin: they unpack JSON, call the ContinuityService stored on the
app, and return JSON. Errors raised by the service are rendered by the
handlers in serialnovel.utils.errors.
"""

import logging
from typing import TYPE_CHECKING, Dict, Any

if TYPE_CHECKING:
    from flask import Flask

from flask import request, jsonify, current_app

from ..utils.errors import ValidationError
from ..services.continuity_service import ContinuityService

logger = logging.getLogger(__name__)

SERVICE_EXTENSION = "continuity_service"


def get_service() -> ContinuityService:
    return current_app.extensions[SERVICE_EXTENSION]


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(
            "Request body must be a JSON object.",
            details={"type": type(data).__name__}
        )
    return data


def register_routes(flask_app: 'Flask') -> None:
    """
    Register all application routes.

    Args:
        flask_app: Flask application instance; the ContinuityService must be
            stored in flask_app.extensions['continuity_service']
    """

    @flask_app.route('/api/health')
    def health():
        """Health check endpoint."""
        return jsonify({"status": "ok"})

    @flask_app.route('/api/status', methods=['GET'])
    def system_status():
        """Engine status with a summary of every novel."""
        return jsonify(get_service().get_system_status())

    @flask_app.route('/api/novels', methods=['POST'])
    def start_novel():
        """
        Start a new novel.

        Request Body (JSON):
            - title (str, required): Novel title
            - slug, author, genre, targetChapters, tropes, world,
              characters, aliases, knownTerms, blockedNames (optional)

        Returns:
            201 with the first chapter prompt and the novel slug

        Raises:
            ValidationError: If the title is missing or the data is invalid
            ConflictError: If the slug is taken
        """
        result = get_service().start_new_novel(_json_body())
        return jsonify(result), 201

    @flask_app.route('/api/novels/<slug>', methods=['GET'])
    def get_novel(slug: str):
        """Full stored state of a novel."""
        return jsonify(get_service().get_state(slug).to_document())

    @flask_app.route('/api/novels/<slug>/next-chapter', methods=['GET'])
    def next_chapter(slug: str):
        """Prompt and constraints for the next chapter."""
        return jsonify(get_service().prepare_next_chapter(slug))

    @flask_app.route('/api/novels/<slug>/chapters', methods=['POST'])
    def commit_chapter(slug: str):
        """
        Validate and commit a generated chapter.

        Request Body (JSON):
            - text (str, required): Raw generated chapter in the output format

        Returns:
            201 when committed, 200 for an already committed chapter,
            422 with the violations when the chapter is rejected
        """
        data = _json_body()
        text = data.get('text') or data.get('chapter')
        if not text or not isinstance(text, str):
            raise ValidationError("Field 'text' is required.", details={"field": "text"})

        result = get_service().commit_chapter(slug, text)
        if result.committed:
            status = 201
        elif result.duplicate:
            status = 200
        else:
            status = 422
        return jsonify(result.to_dict()), status

    @flask_app.route('/api/novels/<slug>/characters', methods=['POST'])
    def register_character(slug: str):
        """
        Register or update a character.

        Request Body (JSON):
            - name (str, required)
            - role (str, optional)
            - aliases (list, optional)
            - any CharacterRecord fields (personalityTraits, currentState, ...)
        """
        data = _json_body()
        name = data.pop('name', None)
        if not name or not isinstance(name, str):
            raise ValidationError("Field 'name' is required.", details={"field": "name"})
        role = data.pop('role', None)
        aliases = data.pop('aliases', None)
        state = get_service().register_character(slug, name, attrs=data, role=role, aliases=aliases)
        return jsonify({
            "novelSlug": slug,
            "name": name.strip(),
            "character": state.characters[name.strip()].to_document(),
        }), 201

    @flask_app.route('/api/novels/<slug>/completion', methods=['POST'])
    def request_completion(slug: str):
        """Move the novel to Completing and return the final chapter prompt."""
        return jsonify(get_service().request_completion(slug))
