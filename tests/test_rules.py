"""
Tests for rewrite rule generation and installation
"""
import asyncio

import pytest

from static_404.cache_writer import CacheWriter
from static_404.metrics import RecacheMetrics
from static_404.models import RuleInstallStatus
from static_404.rules import (
    RuleBlock,
    RuleInstaller,
    build_rule_block,
    extract_from_markers,
    find_block,
)

EXISTING_RULES = """# BEGIN WordPress
<IfModule mod_rewrite.c>
RewriteEngine On
RewriteRule ^index\\.php$ - [L]
RewriteCond %{REQUEST_FILENAME} !-f
RewriteCond %{REQUEST_FILENAME} !-d
RewriteRule . /index.php [L]
</IfModule>
# END WordPress
"""


async def make_installer(config, cached: bool = True) -> RuleInstaller:
    writer = CacheWriter(config.cache_file_path)
    if cached:
        await writer.write(b"Not Found")
    return RuleInstaller(config, writer, RecacheMetrics())


class TestRuleBlock:
    """
    Test cases for RuleBlock rendering and parsing
    """

    def test_render(self, make_config):
        block = build_rule_block(make_config(file_extensions=["php", "js"]))
        lines = block.render().splitlines()

        assert lines[0] == "# BEGIN Static404Site1"
        assert lines[-1] == "# END Static404Site1"
        assert "ErrorDocument 404 /uploads/static-404.html" in lines
        assert "RewriteEngine On" in lines
        assert "RewriteCond %{REQUEST_URI} ^/ [NC]" in lines
        assert "RewriteCond %{REQUEST_FILENAME} !-f" in lines
        assert "RewriteCond %{REQUEST_FILENAME} !-d" in lines
        assert "RewriteCond %{REQUEST_FILENAME} \\.(php|js)$ [NC]" in lines
        assert "RewriteRule .* - [L,END]" in lines
        assert block.render().endswith("# END Static404Site1\n")

    def test_errordocument_inside_module_guard(self, make_config):
        lines = build_rule_block(make_config()).render().splitlines()

        assert lines.index("<IfModule mod_rewrite.c>") < lines.index(
            "ErrorDocument 404 /uploads/static-404.html"
        ) < lines.index("</IfModule>")

    def test_parse_round_trip(self, make_config):
        block = build_rule_block(make_config(home_url="http://example.com/shop/"))
        body = extract_from_markers(block.render(), block.marker)

        parsed = RuleBlock.parse(block.marker, body)

        assert parsed == block

    def test_parse_tolerates_whitespace(self, make_config):
        block = build_rule_block(make_config(file_extensions=["php", "zip"]))
        body = [
            "  " + line.replace(" ", "   ") + "  "
            for line in extract_from_markers(block.render(), block.marker)
        ]

        parsed = RuleBlock.parse(block.marker, body)

        assert parsed is not None
        assert parsed.equivalent_to(block)

    def test_parse_rejects_foreign_block(self):
        assert RuleBlock.parse("Static404Site1", ["ErrorDocument 404 /x.html"]) is None

    def test_extension_order_does_not_matter(self):
        a = RuleBlock(marker="m", error_document="/a", extensions=["php", "js"])
        b = RuleBlock(marker="m", error_document="/a", extensions=["js", "php"])

        assert a.equivalent_to(b)

    def test_changed_fields_are_not_equivalent(self):
        base = RuleBlock(marker="m", error_document="/a", extensions=["php"])

        assert not base.equivalent_to(base.model_copy(update={"error_document": "/b"}))
        assert not base.equivalent_to(base.model_copy(update={"base_path": "/shop/"}))
        assert not base.equivalent_to(base.model_copy(update={"extensions": ["php", "js"]}))


class TestMarkers:
    """
    Test marker lookup in shared files
    """

    def test_extract_missing_marker(self):
        assert extract_from_markers(EXISTING_RULES, "Static404Site1") == []

    def test_extract_existing_marker(self):
        lines = extract_from_markers(EXISTING_RULES, "WordPress")

        assert lines[0] == "<IfModule mod_rewrite.c>"
        assert lines[-1] == "</IfModule>"

    def test_markers_match_exactly(self):
        text = "# BEGIN Static404Site12\nsite twelve\n# END Static404Site12\n"

        assert find_block(text.splitlines(), "Static404Site1") is None
        assert extract_from_markers(text, "Static404Site12") == ["site twelve"]

    def test_unterminated_block(self):
        lines = ["# BEGIN Static404Site1", "a", "b"]
        assert find_block(lines, "Static404Site1") == (0, None)


class TestRuleInstaller:
    """
    Test cases for RuleInstaller
    """

    @pytest.mark.asyncio
    async def test_not_installed_without_cache_file(self, make_config):
        config = make_config()
        config.rules_file.write_text(EXISTING_RULES)
        installer = await make_installer(config, cached=False)

        status = await installer.ensure_rules_installed()

        assert status == RuleInstallStatus.NOT_CACHED
        assert config.rules_file.read_text() == EXISTING_RULES

    @pytest.mark.asyncio
    async def test_install_prepends_block(self, make_config):
        config = make_config()
        config.rules_file.write_text(EXISTING_RULES)
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed()

        content = config.rules_file.read_text()
        assert status == RuleInstallStatus.INSTALLED
        assert content.startswith("# BEGIN Static404Site1\n")
        assert content.endswith(EXISTING_RULES)
        assert content == build_rule_block(config).render() + "\n" + EXISTING_RULES
        assert installer.metrics.rule_installs == 1

    @pytest.mark.asyncio
    async def test_install_creates_missing_rules_file(self, make_config):
        config = make_config()
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed()

        assert status == RuleInstallStatus.INSTALLED
        assert "ErrorDocument 404 /uploads/static-404.html" in config.rules_file.read_text()

    @pytest.mark.asyncio
    async def test_install_is_idempotent(self, make_config):
        """
        Test that a second install leaves the file identical
        """
        config = make_config()
        config.rules_file.write_text(EXISTING_RULES)
        installer = await make_installer(config)

        first = await installer.ensure_rules_installed()
        after_first = config.rules_file.read_text()
        second = await installer.ensure_rules_installed()
        after_second = config.rules_file.read_text()

        assert first == RuleInstallStatus.INSTALLED
        assert second == RuleInstallStatus.ALREADY_INSTALLED
        assert after_first == after_second
        assert after_second.count("# BEGIN Static404Site1") == 1

    @pytest.mark.asyncio
    async def test_whitespace_variant_counts_as_installed(self, make_config):
        config = make_config()
        rendered = build_rule_block(config).render()
        config.rules_file.write_text(rendered.replace("RewriteEngine On", "RewriteEngine   On\t"))
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed()

        assert status == RuleInstallStatus.ALREADY_INSTALLED
        assert config.rules_file.read_text().count("# BEGIN Static404Site1") == 1

    @pytest.mark.asyncio
    async def test_stale_block_is_left_alone(self, make_config):
        old = make_config(file_extensions=["php"])
        config = make_config(file_extensions=["php", "zip"])
        before = build_rule_block(old).render() + "\n" + EXISTING_RULES
        config.rules_file.write_text(before)
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed()

        assert status == RuleInstallStatus.STALE
        assert config.rules_file.read_text() == before

    @pytest.mark.asyncio
    async def test_refresh_replaces_stale_block_in_place(self, make_config):
        old = make_config(file_extensions=["php"])
        config = make_config(file_extensions=["php", "zip"])
        config.rules_file.write_text(
            "# BEGIN Other\nkeep me\n# END Other\n\n"
            + build_rule_block(old).render()
            + "\n"
            + EXISTING_RULES
        )
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed(refresh=True)

        content = config.rules_file.read_text()
        assert status == RuleInstallStatus.REFRESHED
        assert content.startswith("# BEGIN Other\nkeep me\n# END Other\n")
        assert content.count("# BEGIN Static404Site1") == 1
        assert "\\.(php|zip)$" in content
        assert content.endswith(EXISTING_RULES)

    @pytest.mark.asyncio
    async def test_refresh_refuses_unterminated_block(self, make_config):
        config = make_config()
        config.rules_file.write_text("# BEGIN Static404Site1\nbroken\n" + EXISTING_RULES)
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed(refresh=True)

        assert status == RuleInstallStatus.FAILED
        assert config.rules_file.read_text().startswith("# BEGIN Static404Site1\nbroken\n")

    @pytest.mark.asyncio
    async def test_two_sites_share_one_file(self, make_config, temp_dir):
        """
        Test that two sites each install their own non-overlapping block
        """
        main_site = make_config(site_id=1, home_url="http://example.com/")
        shop_site = make_config(
            site_id=2,
            home_url="http://example.com/shop/",
            upload_dir=temp_dir / "uploads" / "sites" / "2",
            upload_url="/uploads/sites/2",
        )
        main_site.rules_file.write_text(EXISTING_RULES)

        assert await (await make_installer(main_site)).ensure_rules_installed() == RuleInstallStatus.INSTALLED
        assert await (await make_installer(shop_site)).ensure_rules_installed() == RuleInstallStatus.INSTALLED

        content = main_site.rules_file.read_text()
        main_lines = extract_from_markers(content, "Static404Site1")
        shop_lines = extract_from_markers(content, "Static404Site2")

        assert content.count("# BEGIN Static404Site1") == 1
        assert content.count("# BEGIN Static404Site2") == 1
        assert "RewriteCond %{REQUEST_URI} ^/ [NC]" in main_lines
        assert "RewriteCond %{REQUEST_URI} ^/shop/ [NC]" not in main_lines
        assert "RewriteCond %{REQUEST_URI} ^/shop/ [NC]" in shop_lines
        assert "ErrorDocument 404 /uploads/sites/2/static-404.html" in shop_lines
        assert content.endswith(EXISTING_RULES)

        lines = content.splitlines()
        main_span = find_block(lines, "Static404Site1")
        shop_span = find_block(lines, "Static404Site2")
        assert shop_span[1] < main_span[0] or main_span[1] < shop_span[0]

        # Re-running either site changes nothing
        assert await (await make_installer(main_site)).ensure_rules_installed() == RuleInstallStatus.ALREADY_INSTALLED
        assert main_site.rules_file.read_text() == content

    @pytest.mark.asyncio
    async def test_unterminated_block_never_borrows_next_site(self, make_config, temp_dir):
        """
        Test that a block missing its END line fails instead of being read
        through to the following site's block
        """
        main_site = make_config(site_id=1, file_extensions=["php"])
        shop_site = make_config(
            site_id=2,
            home_url="http://example.com/shop/",
            upload_dir=temp_dir / "uploads" / "sites" / "2",
            upload_url="/uploads/sites/2",
        )
        before = (
            "# BEGIN Static404Site1\nbroken\n"
            + build_rule_block(shop_site).render()
            + "\n"
            + EXISTING_RULES
        )
        main_site.rules_file.write_text(before)
        installer = await make_installer(main_site)

        status = await installer.ensure_rules_installed()

        assert status == RuleInstallStatus.FAILED
        assert installer.metrics.errors == {"RuleInstallError": 1}
        assert main_site.rules_file.read_text() == before

    @pytest.mark.asyncio
    async def test_concurrent_installs_keep_every_block(self, make_config, temp_dir):
        """
        Test that sites installing into one shared file at the same time
        each end up with exactly one block
        """
        configs = [
            make_config(
                site_id=site_id,
                home_url=f"http://example.com/site{site_id}/",
                upload_dir=temp_dir / "uploads" / "sites" / str(site_id),
                upload_url=f"/uploads/sites/{site_id}",
            )
            for site_id in range(1, 9)
        ]
        configs[0].rules_file.write_text(EXISTING_RULES)
        installers = [await make_installer(config) for config in configs]

        statuses = await asyncio.gather(
            *(installer.ensure_rules_installed() for installer in installers)
        )

        content = configs[0].rules_file.read_text()
        assert statuses == [RuleInstallStatus.INSTALLED] * len(configs)
        for config in configs:
            assert content.count(f"# BEGIN {config.marker}\n") == 1
            assert content.count(f"# END {config.marker}\n") == 1
            assert f"RewriteCond %{{REQUEST_URI}} ^/site{config.site_id}/ [NC]" in (
                extract_from_markers(content, config.marker)
            )
        assert content.endswith(EXISTING_RULES)

    @pytest.mark.asyncio
    async def test_unreadable_location_fails(self, make_config, temp_dir):
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory")
        config = make_config(rules_file=blocker / ".htaccess")
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed()

        assert status == RuleInstallStatus.FAILED
        assert installer.metrics.rule_install_failures == 1
        assert installer.metrics.errors == {"RuleInstallError": 1}

    @pytest.mark.asyncio
    async def test_empty_extension_list_warns(self, make_config, caplog):
        config = make_config(file_extensions=[])
        installer = await make_installer(config)

        status = await installer.ensure_rules_installed()

        assert status == RuleInstallStatus.INSTALLED
        assert "Extension list is empty" in caplog.text
        assert "\\.()$ [NC]" in config.rules_file.read_text()

    @pytest.mark.asyncio
    async def test_read_installed_block(self, make_config):
        config = make_config()
        installer = await make_installer(config)

        assert await installer.read_installed_block() is None
        await installer.ensure_rules_installed()

        assert await installer.read_installed_block() == build_rule_block(config)
