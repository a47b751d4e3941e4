"""
FHIR JSON schemas used as a contract for Questionnaire documents.

These are pragmatic subsets of the R4 resources: they cover the item types,
answer options and extension shapes the form builder reads and writes, not
the full R4 resource definitions.
"""

ITEM_TYPES = [
    "group",
    "display",
    "boolean",
    "decimal",
    "integer",
    "date",
    "dateTime",
    "time",
    "string",
    "text",
    "url",
    "choice",
    "open-choice",
    "attachment",
    "reference",
    "quantity",
]

_EXTENSION: dict = {
    "type": "object",
    "required": ["url"],
    "properties": {
        "url": {"type": "string", "minLength": 1},
        "extension": {"type": "array", "items": {"$ref": "#/definitions/extension"}},
    },
}

_CODING: dict = {
    "type": "object",
    "properties": {
        "system": {"type": "string"},
        "code": {"type": "string"},
        "display": {"type": "string"},
    },
}

FHIR_QUESTIONNAIRE_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "FHIR Questionnaire (form builder subset)",
    "type": "object",
    "required": ["resourceType", "status"],
    "definitions": {
        "extension": _EXTENSION,
        "coding": _CODING,
        "item": {
            "type": "object",
            "required": ["linkId", "type"],
            "properties": {
                "linkId": {"type": "string", "minLength": 1},
                "text": {"type": "string"},
                "type": {"type": "string", "enum": ITEM_TYPES},
                "required": {"type": "boolean"},
                "readOnly": {"type": "boolean"},
                "repeats": {"type": "boolean"},
                "enableBehavior": {"type": "string", "enum": ["all", "any"]},
                "enableWhen": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["question", "operator"],
                        "properties": {
                            "question": {"type": "string", "minLength": 1},
                            "operator": {
                                "type": "string",
                                "enum": ["exists", "=", "!=", ">", "<", ">=", "<="],
                            },
                        },
                    },
                },
                "answerOption": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "valueCoding": {"$ref": "#/definitions/coding"},
                            "valueString": {"type": "string"},
                            "valueInteger": {"type": "integer"},
                        },
                    },
                },
                "initial": {"type": "array", "items": {"type": "object"}},
                "extension": {"type": "array", "items": {"$ref": "#/definitions/extension"}},
                "item": {"type": "array", "items": {"$ref": "#/definitions/item"}},
            },
            # Display and group items never carry an answer, so never a required flag.
            "if": {"properties": {"type": {"enum": ["display", "group"]}}},
            "then": {"not": {"required": ["required"]}},
        },
    },
    "properties": {
        "resourceType": {"type": "string", "const": "Questionnaire"},
        "id": {"type": "string"},
        "status": {
            "type": "string",
            "enum": ["draft", "active", "retired", "unknown"],
        },
        "title": {"type": "string"},
        "description": {"type": "string"},
        "version": {"type": "string"},
        "date": {"type": "string"},
        "meta": {
            "type": "object",
            "properties": {
                "tag": {"type": "array", "items": {"$ref": "#/definitions/coding"}},
            },
        },
        "extension": {"type": "array", "items": {"$ref": "#/definitions/extension"}},
        "item": {"type": "array", "items": {"$ref": "#/definitions/item"}},
    },
}


FHIR_QUESTIONNAIRE_RESPONSE_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "FHIR QuestionnaireResponse (form builder subset)",
    "type": "object",
    "required": ["resourceType", "status"],
    "definitions": {
        "reference": {
            "type": "object",
            "required": ["reference"],
            "properties": {"reference": {"type": "string", "minLength": 1}},
        },
        "item": {
            "type": "object",
            "required": ["linkId"],
            "properties": {
                "linkId": {"type": "string", "minLength": 1},
                "text": {"type": "string"},
                "answer": {
                    "type": "array",
                    "items": {"type": "object", "minProperties": 1},
                },
                "item": {"type": "array", "items": {"$ref": "#/definitions/item"}},
            },
        },
    },
    "properties": {
        "resourceType": {"type": "string", "const": "QuestionnaireResponse"},
        "questionnaire": {"type": "string"},
        "status": {
            "type": "string",
            "enum": ["in-progress", "completed", "amended", "entered-in-error", "stopped"],
        },
        "subject": {"$ref": "#/definitions/reference"},
        "encounter": {"$ref": "#/definitions/reference"},
        "author": {"$ref": "#/definitions/reference"},
        "authored": {"type": "string"},
        "item": {"type": "array", "items": {"$ref": "#/definitions/item"}},
    },
}
