"""Create a demo world for development/testing."""

from world_tavern.models import WorldDefinition
from world_tavern.storage import Storage

DEMO_WORLD_ID = "dragons-hollow"

DEMO_WORLD = {
    "id": DEMO_WORLD_ID,
    "name": "Dragon's Hollow",
    "description": "A mountain village terrorized by a young dragon. "
    "The townsfolk need a hero, but things are not as simple as they seem.",
    "author": "demo",
    "entries": [
        {
            "id": "narrator",
            "name": "Narrator",
            "role": "system",
            "position": "top",
            "alwaysSend": True,
            "content": "You are the narrator of a fantasy adventure. Describe the world "
            "vividly and let {{user}} decide what to do next. Keep replies under "
            "three paragraphs.",
        },
        {
            "id": "elena",
            "name": "Elena",
            "role": "character",
            "position": "character",
            "alwaysSend": True,
            "content": "Elena is the village healer: patient, curious about the dragon, "
            "and worried about the captain of the guard.",
        },
        {
            "id": "fafnir",
            "name": "Fafnir the Dragon",
            "role": "lore",
            "keywords": ["dragon", "fafnir"],
            "useFuzzyMatch": True,
            "content": "Fafnir is young and wounded. An arrow of black iron is lodged "
            "under its left wing, and the pain drives it to raid the village.",
        },
        {
            "id": "black-iron",
            "name": "Black Iron",
            "role": "lore",
            "keywords": ["arrow", "black iron"],
            "secondaryKeywords": ["wing", "wound"],
            "secondaryKeywordLogic": "AND_ANY",
            "content": "Black iron is forged only by the smiths of Karsk, who have "
            "quarrelled with the village for years.",
        },
        {
            "id": "low-health",
            "name": "Wounded",
            "role": "plot",
            "position": "depth",
            "depth": 2,
            "conditions": [{"variableId": "hp", "operator": "lte", "value": 3}],
            "content": "{{user}} is badly hurt. Villagers offer shelter and bandages.",
        },
        {
            "id": "greeting",
            "name": "Greeting",
            "role": "greeting",
            "position": "greeting",
            "content": "You stand at the edge of Dragon's Hollow as dusk settles over the "
            "mountain pass. Smoke curls from a handful of chimneys, but half the "
            "village lies in charred ruins. You have {{hp}} health and {{gold}} gold.",
        },
    ],
    "variables": [
        {"id": "hp", "name": "Health", "type": "number", "defaultValue": 10, "min": 0, "max": 10,
         "updateHints": "Lower when the player is hurt, raise when healed."},
        {"id": "gold", "name": "Gold", "type": "number", "defaultValue": 5, "min": 0},
        {"id": "location", "name": "Location", "type": "string", "defaultValue": "village gate"},
        {"id": "met_elena", "name": "Met Elena", "type": "boolean", "defaultValue": False},
        {"id": "defeated", "name": "Defeated", "type": "boolean", "defaultValue": False},
    ],
    "rules": [
        {
            "id": "knocked-out",
            "name": "Knocked out",
            "conditions": [{"variableId": "hp", "operator": "lte", "value": 0}],
            "effects": [{"variableId": "defeated", "operation": "set", "value": True}],
            "trigger": "on_change",
            "notify": "toast",
            "notification": "You collapse.",
        },
    ],
    "audioTracks": [
        {"id": "village", "name": "Village ambience"},
        {"id": "battle", "name": "Battle drums"},
    ],
    "settings": {"playerName": "Traveller", "enableChoices": True},
}


def create_demo_data(storage: Storage) -> WorldDefinition:
    """Replace the demo world with a fresh copy and return it."""
    world = WorldDefinition.model_validate(DEMO_WORLD)
    storage.delete_world(world.id)
    return storage.save_world(world)
