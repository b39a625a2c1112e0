"""
OpenAPI document for assistant Actions.

FastAPI already publishes the full service schema at ``/openapi.json``.
Actions UIs want something smaller: only the operations the persona may
call, bearer authentication declared up front, and the shared error
envelope. :func:`build_actions_openapi` produces that document.
"""

from typing import Any, Dict

ERROR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": "Standard error response format",
    "required": ["error"],
    "properties": {
        "error": {
            "type": "object",
            "required": ["code", "message"],
            "properties": {
                "code": {
                    "type": "string",
                    "description": "Machine-readable error code",
                    "example": "rate_limited",
                },
                "message": {
                    "type": "string",
                    "description": "Human-readable error message",
                    "example": "Rate limit of 60 requests per 60s exceeded",
                },
            },
        }
    },
}

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_RISK_TOLERANCE = {"type": "string", "enum": ["low", "medium", "high"], "default": "medium"}

_REFERENCE = {
    "type": "object",
    "properties": {
        "document_id": {"type": "string"},
        "source": {"type": "string"},
        "excerpt": {"type": "string"},
        "score": {"type": "number"},
    },
}

_PILLARS = {
    "legal": {**_STRING_LIST, "description": "Legal grounds: rules, duties and procedure"},
    "moral": {**_STRING_LIST, "description": "Moral framing: fairness and good faith"},
    "logic": {**_STRING_LIST, "description": "Logical structure and gaps in the other side's reasoning"},
    "analysis": {"type": "string", "description": "Short overall assessment"},
}

SCHEMAS: Dict[str, Any] = {
    "Error": ERROR_SCHEMA,
    "StrategyRequest": {
        "type": "object",
        "required": ["case_summary"],
        "properties": {
            "case_summary": {"type": "string", "description": "What happened, in the user's words"},
            "opponent_statements": {**_STRING_LIST, "description": "What the other side has said or argued"},
            "goal": {"type": "string", "description": "Outcome the user wants"},
            "jurisdiction": {"type": "string"},
            "risk_tolerance": _RISK_TOLERANCE,
            "tags": {**_STRING_LIST, "description": "Restrict knowledge lookups to these tags"},
            "use_knowledge": {"type": "boolean", "default": True},
        },
    },
    "StrategyResponse": {
        "type": "object",
        "required": ["legal", "moral", "logic", "analysis"],
        "properties": {
            **_PILLARS,
            "risk_tolerance": _RISK_TOLERANCE,
            "sources": {"type": "array", "items": _REFERENCE},
            "generated_by": {"type": "string", "enum": ["llm", "heuristic"]},
        },
    },
    "SimulateRequest": {
        "type": "object",
        "required": ["position"],
        "properties": {
            "position": {"type": "string", "description": "The user's argument to test"},
            "opponent_statements": _STRING_LIST,
            "opponent_profile": {"type": "string", "description": "e.g. 'aggressive landlord counsel'"},
            "rounds": {"type": "integer", "minimum": 1, "maximum": 5, "default": 1},
            "risk_tolerance": _RISK_TOLERANCE,
            "tags": _STRING_LIST,
            "use_knowledge": {"type": "boolean", "default": True},
        },
    },
    "SimulateResponse": {
        "type": "object",
        "required": ["exchanges", "legal", "moral", "logic", "analysis"],
        "properties": {
            "exchanges": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "round": {"type": "integer"},
                        "opponent_argument": {"type": "string"},
                        "suggested_rebuttal": {"type": "string"},
                    },
                },
            },
            "weaknesses": _STRING_LIST,
            **_PILLARS,
            "sources": {"type": "array", "items": _REFERENCE},
            "generated_by": {"type": "string", "enum": ["llm", "heuristic"]},
        },
    },
    "KnowledgeUploadResponse": {
        "type": "object",
        "properties": {
            "documents": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "filename": {"type": "string"},
                        "url": {"type": "string"},
                        "tags": _STRING_LIST,
                        "chunk_count": {"type": "integer"},
                    },
                },
            },
            "duplicates": _STRING_LIST,
        },
    },
}


def _json_body(schema: str) -> Dict[str, Any]:
    return {"required": True, "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{schema}"}}}}


def _json_response(description: str, schema: str) -> Dict[str, Any]:
    return {"description": description, "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{schema}"}}}}


_ERROR_RESPONSES = {
    "401": _json_response("Missing or invalid API key", "Error"),
    "429": _json_response("Rate limit exceeded", "Error"),
    "default": _json_response("Error", "Error"),
}


def build_actions_openapi(base_url: str, version: str, title: str = "Counsel Actions") -> Dict[str, Any]:
    """Build the OpenAPI 3.1 document to paste into an Actions configuration.

    Args:
        base_url: Public URL the assistant platform will call
        version: API version string
        title: Document title

    Returns:
        OpenAPI document as a dict
    """
    paths = {
        "/argument/strategy": {
            "post": {
                "operationId": "generateStrategy",
                "summary": "Generate a legal, moral and logical argument strategy",
                "requestBody": _json_body("StrategyRequest"),
                "responses": {"200": _json_response("Strategy", "StrategyResponse"), **_ERROR_RESPONSES},
            }
        },
        "/argument/simulate": {
            "post": {
                "operationId": "simulateOpponent",
                "summary": "Simulate opposing counsel against the user's position",
                "requestBody": _json_body("SimulateRequest"),
                "responses": {"200": _json_response("Simulation", "SimulateResponse"), **_ERROR_RESPONSES},
            }
        },
        "/knowledge/upload": {
            "post": {
                "operationId": "uploadKnowledge",
                "summary": "Add a file or URL to the knowledge base",
                "requestBody": {
                    "required": True,
                    "content": {
                        "multipart/form-data": {
                            "schema": {
                                "type": "object",
                                "properties": {
                                    "file": {"type": "string", "format": "binary"},
                                    "url": {"type": "string"},
                                    "tags": _STRING_LIST,
                                },
                            }
                        }
                    },
                },
                "responses": {
                    "201": _json_response("Stored documents", "KnowledgeUploadResponse"),
                    "400": _json_response("Neither file nor url given, or the url is not public", "Error"),
                    "413": _json_response("File too large", "Error"),
                    "415": _json_response("Unsupported file type", "Error"),
                    "502": _json_response("The url could not be fetched", "Error"),
                    **_ERROR_RESPONSES,
                },
            }
        },
        "/health": {
            "get": {
                "operationId": "healthCheck",
                "summary": "Service health",
                "security": [],
                "responses": {
                    "200": {
                        "description": "Service is up",
                        "content": {
                            "application/json": {
                                "schema": {"type": "object", "properties": {"status": {"type": "string", "example": "ok"}}}
                            }
                        },
                    }
                },
            }
        },
    }

    return {
        "openapi": "3.1.0",
        "info": {
            "title": title,
            "version": version,
            "description": "Argument strategy, opponent simulation and knowledge upload for a conversational assistant.",
        },
        "servers": [{"url": base_url}],
        "security": [{"bearerAuth": []}],
        "paths": paths,
        "components": {
            "securitySchemes": {"bearerAuth": {"type": "http", "scheme": "bearer"}},
            "schemas": SCHEMAS,
        },
    }
