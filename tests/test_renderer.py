"""
Tests for pull request rendering and the render/decode round trip.
"""

from dep_buddy.cli_config import BuddyConfig, PullRequestConfig
from dep_buddy.dependency import RecoveredFact, UpdateGroup, UpdateType
from dep_buddy.error_handling import get_error_handler
from dep_buddy.grouping import group_updates
from dep_buddy.renderer import (
    FOOTER,
    MAX_BODY_LENGTH,
    REBASE_CHECKBOX,
    TRUNCATION_NOTE,
    PullRequestRenderer,
    generate_labels,
    sanitize_mentions,
)
from dep_buddy.state_codec import decode_state, decode_tables, has_rebase_request

from conftest import make_update


def expected_facts(updates):
    return {
        RecoveredFact(u.name, u.current_version.lstrip("^~"), u.new_version.lstrip("^~"))
        for u in updates
    }


def mixed_updates():
    return [
        make_update("@types/node", "20.8.0", "20.9.0"),
        make_update("lodash", "^4.17.20", "4.17.21", UpdateType.PATCH),
        make_update(
            "monolog/monolog",
            "^3.4",
            "3.5.0",
            file="packages/api/composer.json",
            dependency_type="require",
        ),
        make_update("bun.sh", "1.0.0", "1.1.0", file="deps.yaml"),
        make_update(
            "actions/setup-node",
            "v3",
            "v3.8.1",
            file=".github/workflows/ci.yml",
            dependency_type="github-actions",
        ),
    ]


class TestRenderBody:
    """Test the sections of a rendered body."""

    def setup_method(self):
        self.renderer = PullRequestRenderer(BuddyConfig())
        self.group = UpdateGroup(
            name="Non-Major Updates",
            update_type=UpdateType.MINOR,
            title="chore(deps): update all non-major dependencies",
            updates=mixed_updates(),
        )

    def test_state_block_precedes_tables(self):
        """Test that the hidden block comes before any table."""
        body = self.renderer.render_body(self.group)
        assert body.startswith("This PR contains the following updates:")
        assert body.index("<!-- buddy-state") < body.index("| Package |")

    def test_tables_per_manifest_kind(self):
        """Test that each manifest kind renders in its own table."""
        body = self.renderer.render_body(self.group)

        assert "## 📦 npm Dependencies" in body
        assert "## 🐘 PHP/Composer Dependencies" in body
        assert "## 🔧 System Dependencies" in body
        assert "## 🚀 GitHub Actions" in body
        assert "| **Total** | **5** |" in body
        assert "*2 packages will be updated*" in body
        assert "*1 action will be updated*" in body

    def test_npm_row_shape(self):
        """Test the npm row with a diff link and bold file cell."""
        body = self.renderer.render_body(self.group)
        assert (
            "| [lodash](https://www.npmjs.com/package/lodash) "
            "| [`^4.17.20` -> `4.17.21`](https://renovatebot.com/diffs/npm/lodash/^4.17.20/4.17.21) "
            "| **package.json** | dependencies |"
        ) in body

    def test_composer_row_shape(self):
        """Test the Composer row with a single code span."""
        body = self.renderer.render_body(self.group)
        assert "[`^3.4 -> 3.5.0`]" in body
        assert "| **packages/api/composer.json** | require | minor |" in body

    def test_footer_and_rebase_checkbox(self):
        """Test the closing sections."""
        body = self.renderer.render_body(self.group)
        assert REBASE_CHECKBOX in body
        assert body.endswith(FOOTER)
        assert has_rebase_request(body) is False
        assert has_rebase_request(body.replace("- [ ]", "- [x]")) is True

    def test_ignore_text(self):
        """Test the configuration section wording."""
        body = self.renderer.render_body(self.group)
        assert "you won't be reminded about these updates" in body

        major = group_updates([make_update("react", "17.0.2", "18.2.0", UpdateType.MAJOR)])[0]
        assert "about this major version" in self.renderer.render_body(major)


class TestRoundTrip:
    """Test that decoding a rendered body recovers every update."""

    def test_tables_alone_recover_every_triple(self):
        """Test table decoding without help from the state block."""
        updates = mixed_updates()
        for group in group_updates(updates):
            body = PullRequestRenderer().render_body(group)
            assert set(decode_tables(body)) == expected_facts(group.updates)

    def test_decode_state_recovers_triples_and_files(self):
        """Test the full decode of a rendered body."""
        updates = mixed_updates()
        group = UpdateGroup("All", UpdateType.MINOR, "title", updates)
        state = decode_state(PullRequestRenderer().render_body(group))

        assert state.used_state_block is True
        assert set(state.facts) == expected_facts(updates)
        assert len(state.facts) == len(updates)
        for update in updates:
            assert update.file in state.file_paths

    def test_round_trip_with_edited_visible_part(self):
        """Test that removing the tables still leaves the block authoritative."""
        updates = mixed_updates()
        group = UpdateGroup("All", UpdateType.MINOR, "title", updates)
        body = PullRequestRenderer().render_body(group)
        edited = body.split("## Package Updates Summary")[0]

        assert set(decode_state(edited).facts) == expected_facts(updates)

    def test_truncated_body_keeps_everything(self):
        """Test that a body over the size limit is cut but still decodes."""
        updates = [
            make_update(
                f"pkg-{index}",
                "1.0.0",
                "1.1.0",
                metadata={"release_notes": "x" * 3000},
            )
            for index in range(30)
        ]
        group = UpdateGroup("Big", UpdateType.MINOR, "title", updates)
        body = PullRequestRenderer().render_body(group)

        assert len(body) <= MAX_BODY_LENGTH + 500
        assert TRUNCATION_NOTE in body
        assert REBASE_CHECKBOX in body
        assert body.endswith(FOOTER)
        assert set(decode_state(body).facts) == expected_facts(updates)

    def test_large_group_keeps_every_fact(self):
        """Test a group whose full state block alone exceeds the size limit."""
        updates = [
            make_update(
                f"some-rather-long-package-name-{index}",
                "1.0.0",
                "1.1.0",
                file="packages/frontend/package.json",
            )
            for index in range(500)
        ]
        group = UpdateGroup("Huge", UpdateType.MINOR, "title", updates)
        body = PullRequestRenderer().render_body(group)
        state = decode_state(body)

        assert len(body) <= MAX_BODY_LENGTH
        assert TRUNCATION_NOTE in body
        assert body.endswith(FOOTER)
        assert state.used_state_block is True
        assert len(state.facts) == 500
        assert set(state.facts) == expected_facts(updates)
        assert state.file_paths[0] == "packages/frontend/package.json"
        assert get_error_handler().get_error_stats() == {}

    def test_oversized_block_stays_well_formed(self):
        """Test that a block too big even in compact form is shortened, not cut."""
        updates = [
            make_update(f"@organisation/an-exceptionally-long-package-name-{index}", "1.0.0", "1.1.0")
            for index in range(3000)
        ]
        group = UpdateGroup("Enormous", UpdateType.MINOR, "title", updates)
        body = PullRequestRenderer().render_body(group)
        state = decode_state(body)

        assert len(body) <= MAX_BODY_LENGTH
        assert state.used_state_block is True
        assert 0 < len(state.facts) < 3000
        assert set(state.facts) <= expected_facts(updates)
        assert REBASE_CHECKBOX in body
        assert get_error_handler().get_error_stats() == {}


class TestRender:
    """Test the complete rendered pull request."""

    def test_render_major_group(self, fixed_now):
        """Test title, branch, commit message and labels of a major group."""
        group = group_updates([make_update("react", "17.0.2", "18.2.0", UpdateType.MAJOR)])[0]
        rendered = PullRequestRenderer(BuddyConfig()).render(group, now=fixed_now)

        assert rendered.title == "chore(deps): update dependency react to 18.2.0"
        assert rendered.branch_name == "buddy/update-react-to-18.2.0-20240315"
        assert rendered.commit_message == "chore(deps): update dependency react to 18.2.0"
        assert rendered.labels == ["dependencies", "major"]
        assert rendered.group is group
        assert group.body == rendered.body

    def test_render_groups_uses_branch_prefix(self, fixed_now, sample_updates):
        """Test that the configured prefix reaches the branch names."""
        config = BuddyConfig(pull_request=PullRequestConfig(branch_prefix="deps"))
        rendered = PullRequestRenderer(config).render_groups(
            group_updates(sample_updates), now=fixed_now
        )

        assert [pr.branch_name for pr in rendered] == [
            "deps/update-react-to-18.2.0-20240315",
            "deps/update-dependencies-20240315",
        ]


class TestLabels:
    """Test label generation."""

    def test_update_type_labels(self, sample_updates):
        """Test one label per update type present."""
        group = UpdateGroup("g", UpdateType.MAJOR, "t", sample_updates)
        assert generate_labels(group) == ["dependencies", "major", "minor", "patch"]

    def test_bulk_security_and_configured(self):
        """Test the bulk, security and configured labels."""
        updates = [make_update(f"pkg-{i}", "1.0.0", "1.0.1", UpdateType.PATCH) for i in range(5)]
        updates.append(make_update("helmet", "7.0.0", "7.1.0"))
        group = UpdateGroup("g", UpdateType.MINOR, "t", updates)

        assert generate_labels(group, ["dependencies", "automerge"]) == [
            "dependencies",
            "minor",
            "patch",
            "bulk-update",
            "security",
            "automerge",
        ]


class TestSanitizeMentions:
    """Test mention neutralisation in release notes."""

    def test_handle_is_neutralised(self):
        """Test a plain @handle."""
        assert sanitize_mentions("Thanks @octocat!") == "Thanks @&#8203;octocat!"

    def test_emails_and_scoped_packages_untouched(self):
        """Test that emails and scoped names are left alone."""
        text = "Mail dev@example.com about @types/node"
        assert sanitize_mentions(text) == text

    def test_code_untouched(self):
        """Test inline code and fenced blocks."""
        text = "Use `@decorator` here\n```\n@Component\n```\nby @someone"
        assert sanitize_mentions(text) == (
            "Use `@decorator` here\n```\n@Component\n```\nby @&#8203;someone"
        )

    def test_release_notes_in_body(self):
        """Test that rendered release notes are sanitised."""
        update = make_update("lodash", "4.17.20", "4.17.21", metadata={"release_notes": "by @jdalton"})
        group = UpdateGroup("g", UpdateType.PATCH, "t", [update])
        body = PullRequestRenderer().render_body(group)
        assert "by @&#8203;jdalton" in body

    def test_empty(self):
        """Test empty input."""
        assert sanitize_mentions("") == ""
