"""OpenAPI description of the file routes, served under ``/api/swagger``."""

from typing import Any, Dict

API_TITLE = "File Serving API"
API_VERSION = "1.0"

_PIN_PARAMETER = {
    "name": "pin",
    "in": "path",
    "required": True,
    "description": "PIN (6-8 digits)",
    "schema": {"type": "string"},
}

_ERROR_RESPONSE = {
    "content": {
        "application/json": {
            "schema": {
                "type": "object",
                "properties": {"error": {"type": "string"}},
            }
        }
    }
}


def _error(description: str) -> Dict[str, Any]:
    return {"description": description, **_ERROR_RESPONSE}


def build_openapi_document(server_url: str = "/") -> Dict[str, Any]:
    return {
        "openapi": "3.0.3",
        "info": {
            "title": API_TITLE,
            "version": API_VERSION,
            "description": "This is a sample server for serving files.",
            "license": {
                "name": "Apache 2.0",
                "url": "http://www.apache.org/licenses/LICENSE-2.0.html",
            },
        },
        "servers": [{"url": server_url}],
        "tags": [{"name": "files"}],
        "paths": {
            "/api/files/{pin}": {
                "get": {
                    "tags": ["files"],
                    "summary": "List files",
                    "description": "Get existing files for a PIN",
                    "parameters": [_PIN_PARAMETER],
                    "responses": {
                        "200": {
                            "description": "Files stored under the PIN",
                            "content": {
                                "application/json": {
                                    "schema": {
                                        "type": "object",
                                        "properties": {
                                            "files": {
                                                "type": "array",
                                                "items": {
                                                    "type": "object",
                                                    "properties": {
                                                        "name": {"type": "string"},
                                                        "size": {"type": "integer", "format": "int64"},
                                                    },
                                                },
                                            }
                                        },
                                    }
                                }
                            },
                        },
                        "400": _error("Invalid PIN"),
                        "500": _error("Storage error"),
                    },
                },
                "post": {
                    "tags": ["files"],
                    "summary": "Upload a file",
                    "description": "Upload a file to the storage for a specific PIN",
                    "parameters": [_PIN_PARAMETER],
                    "requestBody": {
                        "required": True,
                        "content": {
                            "multipart/form-data": {
                                "schema": {
                                    "type": "object",
                                    "properties": {
                                        "file": {"type": "string", "format": "binary"}
                                    },
                                    "required": ["file"],
                                }
                            }
                        },
                    },
                    "responses": {
                        "200": {
                            "description": "Upload stored",
                            "content": {
                                "application/json": {
                                    "schema": {
                                        "type": "object",
                                        "properties": {"message": {"type": "string"}},
                                    }
                                }
                            },
                        },
                        "400": _error("Missing file field or invalid name"),
                        "413": _error("File too large"),
                        "500": _error("Storage error"),
                    },
                },
            },
            "/api/files/{pin}/{filename}": {
                "get": {
                    "tags": ["files"],
                    "summary": "Download a file",
                    "description": "Download a file by name for a specific PIN",
                    "parameters": [
                        _PIN_PARAMETER,
                        {
                            "name": "filename",
                            "in": "path",
                            "required": True,
                            "description": "Filename",
                            "schema": {"type": "string"},
                        },
                    ],
                    "responses": {
                        "200": {
                            "description": "File contents",
                            "content": {
                                "application/octet-stream": {
                                    "schema": {"type": "string", "format": "binary"}
                                }
                            },
                        },
                        "404": _error("File not found"),
                    },
                }
            },
        },
    }
