import pytest

from crq_webhook.domain.selectors import LabelSelector, SelectorError


class TestLabelSelector:
    def test_absent_selector_is_none(self):
        assert LabelSelector.from_dict(None) is None

    def test_empty_selector_matches_everything(self):
        selector = LabelSelector.from_dict({})
        assert selector.is_empty
        assert selector.matches({})
        assert selector.matches({"team": "payments"})

    def test_match_labels_and_expressions_are_anded(self):
        selector = LabelSelector.from_dict(
            {
                "matchLabels": {"team": "payments"},
                "matchExpressions": [{"key": "env", "operator": "In", "values": ["prod", "staging"]}],
            }
        )
        assert selector.matches({"team": "payments", "env": "prod"})
        assert not selector.matches({"team": "payments", "env": "dev"})
        assert not selector.matches({"team": "search", "env": "prod"})

    @pytest.mark.parametrize(
        ("expression", "labels", "expected"),
        [
            ({"key": "env", "operator": "NotIn", "values": ["dev"]}, {"env": "prod"}, True),
            ({"key": "env", "operator": "NotIn", "values": ["dev"]}, {}, True),
            ({"key": "env", "operator": "NotIn", "values": ["dev"]}, {"env": "dev"}, False),
            ({"key": "env", "operator": "Exists"}, {"env": ""}, True),
            ({"key": "env", "operator": "Exists"}, {}, False),
            ({"key": "env", "operator": "DoesNotExist"}, {}, True),
            ({"key": "env", "operator": "DoesNotExist"}, {"env": "x"}, False),
        ],
    )
    def test_operators(self, expression, labels, expected):
        selector = LabelSelector.from_dict({"matchExpressions": [expression]})
        assert selector.matches(labels) is expected

    @pytest.mark.parametrize(
        "raw",
        [
            "team=payments",
            {"matchLabels": ["team"]},
            {"matchLabels": {"team": 1}},
            {"matchExpressions": {"key": "env"}},
            {"matchExpressions": [{"key": "", "operator": "Exists"}]},
            {"matchExpressions": [{"key": "env", "operator": "Matches", "values": ["x"]}]},
            {"matchExpressions": [{"key": "env", "operator": "In"}]},
            {"matchExpressions": [{"key": "env", "operator": "Exists", "values": ["x"]}]},
            {"matchExpressions": [{"key": "env", "operator": "In", "values": [1]}]},
        ],
    )
    def test_malformed_selectors_are_rejected(self, raw):
        with pytest.raises(SelectorError):
            LabelSelector.from_dict(raw)
