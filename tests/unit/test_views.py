from __future__ import annotations

import pytest
from pydantic import ValidationError

from scenario_engine.engine.views import (
    ClickAction,
    CommandResponse,
    MicroActionEnvelope,
    ScrollAction,
    TypeAction,
    WaitAction,
    WebsiteConfig,
)
from scenario_engine.exceptions import format_error

SITE = {
    "website": {"name": "Shop", "domain": "shop.test", "type": "ecommerce"},
    "selectors": {
        "global": {"cart": "#cart"},
        "pages": {
            "home": {"urlPattern": "^https://shop\\.test/$", "identifiers": {"hero": ".hero"}},
            "product": {"urlPattern": "/product/", "elements": {"buy": "button.buy"}},
        },
    },
    "scenarios": {
        "browse": {
            "name": "Browse",
            "goals": {
                "requiredMetrics": {"productViews": 2},
                "sessionDuration": {"min": 1, "max": 3, "unit": "minutes"},
            },
            "pages": {
                "home": {
                    "stayDuration": {"min": 1, "max": 2, "unit": "seconds"},
                    "entryActions": [{"type": "wait", "duration": "1-2s"}],
                    "actions": {
                        "nonNavigation": [
                            {
                                "name": "look around",
                                "probability": 0.7,
                                "microSequence": [{"type": "scroll", "distance": 300}],
                            }
                        ],
                        "navigation": [
                            {
                                "name": "open product",
                                "probability": 0.3,
                                "conditions": {"minTimeOnPage": 2000, "elementExists": ".product"},
                                "impact": {"productViews": 1},
                                "targetPage": "product",
                                "microSequence": [
                                    {"type": "click", "target": ".product:random"},
                                ],
                            }
                        ],
                    },
                }
            },
        }
    },
}


def test_website_config_parses_camel_case_document():
    config = WebsiteConfig.model_validate(SITE)
    scenario = config.scenarios["browse"]
    assert scenario.id == "browse"
    assert scenario.goals.required_metrics == {"productViews": 2}
    assert scenario.goals.session_duration.bounds_ms() == (60_000, 180_000)

    home = scenario.pages["home"]
    assert home.stay_duration.bounds_ms() == (1000, 2000)
    assert isinstance(home.entry_actions[0], WaitAction)
    navigation = home.actions.navigation[0]
    assert navigation.target_page == "product"
    assert navigation.conditions.min_time_on_page == 2000
    assert navigation.conditions.element_exists == ".product"
    assert isinstance(navigation.micro_sequence[0], ClickAction)
    assert [a.name for a in home.actions.all()] == ["look around", "open product"]

    assert config.selectors.global_selectors == {"cart": "#cart"}
    assert config.selectors.pages["product"].elements == {"buy": "button.buy"}


def test_scenario_defaults_to_session_duration_goal():
    config = WebsiteConfig.model_validate({"scenarios": {"idle": {}}})
    goals = config.scenarios["idle"].goals
    assert goals.required_metrics == {}
    assert goals.session_duration.bounds_ms() == (5 * 60_000, 15 * 60_000)


def test_probability_is_clamped():
    config = WebsiteConfig.model_validate(
        {"scenarios": {"s": {"pages": {"p": {"actions": {"navigation": [{"probability": 3}, {"probability": -1}]}}}}}}
    )
    actions = config.scenarios["s"].pages["p"].actions.navigation
    assert [a.probability for a in actions] == [1.0, 0.0]


def test_invalid_url_pattern_matches_everything():
    config = WebsiteConfig.model_validate({"selectors": {"pages": {"broken": {"urlPattern": "([unclosed"}}}})
    assert config.selectors.pages["broken"].url_pattern == ".*"


def test_unknown_micro_action_type_is_rejected():
    with pytest.raises(ValidationError):
        MicroActionEnvelope.model_validate({"action": {"type": "teleport", "target": "#x"}})


def test_scroll_requires_distance_or_target():
    with pytest.raises(ValidationError):
        ScrollAction()
    assert ScrollAction(distance="-250px").distance_px() == -250
    assert ScrollAction(to="#footer").distance_px() == 0


def test_type_action_defaults():
    action = MicroActionEnvelope.model_validate({"action": {"type": "type", "target": "#q", "text": "shoes"}}).action
    assert isinstance(action, TypeAction)
    assert action.speed == "100-200ms"
    assert action.clear_first is False
    assert action.optional is False


def test_duration_range_validation():
    with pytest.raises(ValidationError):
        WebsiteConfig.model_validate({"scenarios": {"s": {"pages": {"p": {"stayDuration": {"min": 5, "max": 1}}}}}})
    with pytest.raises(ValidationError):
        WebsiteConfig.model_validate({"scenarios": {"s": {"pages": {"p": {"stayDuration": {"unit": "fortnights"}}}}}})


def test_command_response_serialization():
    assert CommandResponse.ok({"found": True}).to_dict() == {"success": True, "data": {"found": True}}
    assert CommandResponse.fail("nope").to_dict() == {"success": False, "error": "nope"}


def test_validation_errors_are_formatted_for_display():
    with pytest.raises(ValidationError) as exc_info:
        MicroActionEnvelope.model_validate({"action": {"type": "click"}})
    assert format_error(exc_info.value).startswith("Invalid scenario configuration")
