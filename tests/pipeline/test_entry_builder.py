from pathlib import Path

from lxml import etree

from dexbook.config import QualityTier
from dexbook.models import (
    CatalogEntry,
    ImageAsset,
    ImageRef,
    InfoField,
    RelationKind,
    RelationRef,
    RelationStatus,
    Stats,
    TextBlock,
    TextSpan,
)
from dexbook.pipeline.assembler import DICTIONARY_NS, XHTML_NS, render_document
from dexbook.pipeline.entry_builder import build_fragment
from tests.helpers import page_url

NS = {"h": XHTML_NS, "d": DICTIONARY_NS}


def resolved(kind, target, title):
    return RelationRef(kind, target, status=RelationStatus.RESOLVED, target_title=title)


def plain(heading, *texts):
    return TextBlock(heading, tuple((TextSpan(text),) for text in texts))


def asset(source_id, caption=None, flex=False):
    ref = ImageRef(
        source_id=source_id,
        thumb_url=f"https://archives.bulbagarden.net/thumb/{source_id}.png",
        origin_url=f"https://archives.bulbagarden.net/{source_id}.png",
        alt=source_id,
        width=120,
        caption=caption,
        flex=flex,
    )
    return ImageAsset(
        source_id=source_id,
        tier=QualityTier.FAST,
        content_hash="0" * 64,
        cache_path=Path("/nonexistent"),
        bundle_path=f"images/{source_id}.webp",
        ref=ref,
    )


def pikachu(**overrides):
    fields = dict(
        identifier=25,
        name="Pikachu",
        url=page_url("Pikachu"),
        categories=("Mouse Pokémon",),
        japanese_name="ピカチュウ",
        pronunciation="ピカチュウ",
        romanization="Pikachu",
        text_blocks=(plain(None, "Pikachu is an Electric-type Pokémon."),),
        stats=Stats(hp=35, attack=55, defense=40, sp_atk=50, sp_def=50, speed=90),
        relations=(
            resolved(RelationKind.EVOLUTION_PREDECESSOR, 172, "Pichu"),
            resolved(RelationKind.EVOLUTION_SUCCESSOR, 26, "Raichu"),
            RelationRef(RelationKind.ALTERNATE_FORM, "Partner_Pikachu", status=RelationStatus.DANGLING),
            resolved(RelationKind.TYPE_ASSOCIATION, "electric", "Electric"),
        ),
    )
    fields.update(overrides)
    return CatalogEntry(**fields)


def parse(fragment):
    return etree.fromstring(render_document([fragment]).encode("utf-8"))


def test_entry_element_and_index_rows():
    fragment = build_fragment(pikachu())
    root = parse(fragment)

    entry = root.find("d:entry", NS)
    assert entry.get("id") == "pokemon-25"
    assert entry.get(f"{{{DICTIONARY_NS}}}title") == "Pikachu"
    values = [i.get(f"{{{DICTIONARY_NS}}}value") for i in entry.findall("d:index", NS)]
    assert values == ["Pikachu", "ピカチュウ"]
    assert fragment.identifier == 25


def test_header_sections():
    root = parse(build_fragment(pikachu()))

    assert root.findtext(".//h:div[@class='pokedex-id']", namespaces=NS) == "#0025"
    assert root.findtext(".//h:h1[@class='pokemon-name']", namespaces=NS) == "Pikachu"
    assert root.findtext(".//h:ul[@class='pokemon-categories']/h:li", namespaces=NS) == "Mouse Pokémon"
    assert root.findtext(".//h:div[@class='pokemon-name-jp']", namespaces=NS) == "ピカチュウ (Pikachu)"
    pronunciation = root.find(".//h:span[@class='pronunciation']", NS)
    assert pronunciation.text == "| Pikachū |"
    assert pronunciation.get(f"{{{DICTIONARY_NS}}}pr") == "ja"


def test_no_pronunciation_block_without_kana():
    fragment = build_fragment(pikachu(pronunciation=None, japanese_name=None))

    assert "pronunciation" not in fragment.markup
    assert "pokemon-name-jp" not in fragment.markup


def test_only_resolved_relations_are_linked():
    root = parse(build_fragment(pikachu()))

    links = {a.get("href"): a.text for a in root.iterfind(".//h:div[@class='pokemon-relations']//h:a", NS)}
    assert links == {
        "x-dictionary:r:pokemon-172": "Pichu",
        "x-dictionary:r:pokemon-26": "Raichu",
    }
    assert root.find(".//h:div[@class='relation alternate-forms']", NS) is None
    type_link = root.find(".//h:ul[@class='pokemon-types']/h:li/h:a", NS)
    assert type_link.get("href") == "https://bulbapedia.bulbagarden.net/wiki/Electric_(type)"


def test_unresolved_relations_render_nothing():
    entry = pikachu(
        relations=(RelationRef(RelationKind.EVOLUTION_SUCCESSOR, 26), RelationRef(RelationKind.TYPE_ASSOCIATION, "electric"))
    )

    fragment = build_fragment(entry)

    assert "x-dictionary" not in fragment.markup
    assert "pokemon-types" not in fragment.markup


def test_stats_table_with_total():
    root = parse(build_fragment(pikachu()))

    rows = root.findall(".//h:table[@class='pokemon-stats']/h:tbody/h:tr", NS)
    assert [(r.findtext("h:th", namespaces=NS), r.findtext("h:td", namespaces=NS)) for r in rows] == [
        ("HP", "35"),
        ("Attack", "55"),
        ("Defense", "40"),
        ("Sp. Atk", "50"),
        ("Sp. Def", "50"),
        ("Speed", "90"),
        ("Total", "320"),
    ]


def test_text_is_escaped():
    entry = pikachu(
        name='Tom & "Jerry" <Mon>',
        categories=("<script>alert(1)</script>",),
        text_blocks=(plain("A & B", "1 < 2 & 3 > 2\x07"),),
    )

    fragment = build_fragment(entry)
    root = parse(fragment)

    assert "<script>" not in fragment.markup
    assert root.findtext(".//h:h1", namespaces=NS) == 'Tom & "Jerry" <Mon>'
    assert root.findtext(".//h:div[@class='text-block']/h:h2", namespaces=NS) == "A & B"
    assert root.findtext(".//h:div[@class='text-block']/h:p", namespaces=NS) == "1 < 2 & 3 > 2"


def test_images_group_flex_runs_and_index_captions():
    images = [
        asset("0025pikachu"),
        asset("0025pikachu-male", caption="Male", flex=True),
        asset("0025pikachu-female", caption="Female Pikachu", flex=True),
    ]

    fragment = build_fragment(pikachu(), images)
    root = parse(fragment)

    assert fragment.image_paths == (
        "images/0025pikachu.webp",
        "images/0025pikachu-male.webp",
        "images/0025pikachu-female.webp",
    )
    flex = root.find(".//h:li[@class='pokemon-images-flex']", NS)
    assert [li.get("id") for li in flex.iterfind(".//h:li", NS)] == ["pokemon-image-1", "pokemon-image-2"]

    anchored = {
        i.get(f"{{{DICTIONARY_NS}}}value"): i.get(f"{{{DICTIONARY_NS}}}anchor")
        for i in root.iterfind(".//d:index", NS)
        if i.get(f"{{{DICTIONARY_NS}}}anchor")
    }
    assert anchored == {
        "Pikachu - Male": "xpointer(//*[@id='pokemon-image-1'])",
        "Female Pikachu": "xpointer(//*[@id='pokemon-image-2'])",
    }


def test_single_flex_image_is_not_grouped():
    fragment = build_fragment(pikachu(), [asset("a", flex=True), asset("b")])

    assert "pokemon-images-flex" not in fragment.markup


def test_entry_without_images_references_none():
    fragment = build_fragment(pikachu())

    assert fragment.image_paths == ()
    assert "<img" not in fragment.markup


def test_footer_links_back_to_page():
    root = parse(build_fragment(pikachu()))

    link = root.find(".//h:div[@class='footer-read-more']/h:a", NS)
    assert link.text == "Read more on Bulbapedia"
    assert link.get("href") == page_url("Pikachu")


def test_info_boxes_surround_the_lead_text():
    entry = pikachu(
        info_fields=(
            InfoField("Abilities", ("Static", "Lightning Rod")),
            InfoField("Height", ("1'04\"", "0.4 m"), extra=True),
        ),
        text_blocks=(plain(None, "Lead."), plain("Biology", "Body.")),
    )

    root = parse(build_fragment(entry))

    container = root.find(".//h:div[@class='outer-container']", NS)
    assert [child.get("class") for child in container] == [
        "pokedex-id",
        "pokemon-name",
        "pronunciation",
        "pokemon-categories",
        "pokemon-name-jp",
        "pokemon-types",
        "roundy top-info-box",
        "text-block",
        "roundy extra-info-box",
        "pokemon-stats",
        "pokemon-relations",
        "text-block",
        "footer-read-more",
    ]
    height = root.find(".//h:table[@class='roundy extra-info-box']/h:tbody/h:tr", NS)
    assert height.findtext("h:th", namespaces=NS) == "Height"
    cell = height.find("h:td", NS)
    assert cell.text == "1'04\""
    assert cell.find("h:br", NS).tail == "0.4 m"


def test_entry_without_info_fields_has_no_info_boxes():
    fragment = build_fragment(pikachu())

    assert "info-box" not in fragment.markup


def test_only_resolved_mentions_are_linked():
    block = TextBlock(
        None,
        (
            (
                TextSpan("Evolves from "),
                TextSpan("Pichu", resolved(RelationKind.TEXT_MENTION, 172, "Pichu")),
                TextSpan(", related to "),
                TextSpan(
                    "Partner Pikachu",
                    RelationRef(RelationKind.TEXT_MENTION, "Partner_Pikachu", status=RelationStatus.DANGLING),
                ),
                TextSpan("."),
            ),
        ),
    )

    root = parse(build_fragment(pikachu(text_blocks=(block,))))

    paragraph = root.find(".//h:div[@class='text-block']/h:p", NS)
    assert "".join(paragraph.itertext()) == "Evolves from Pichu, related to Partner Pikachu."
    assert [(a.get("href"), a.text) for a in paragraph.iterfind("h:a", NS)] == [
        ("x-dictionary:r:pokemon-172", "Pichu")
    ]


def test_body_images_render_inside_their_section():
    figure = asset("pikachu-anime", caption="In the anime")
    missing = asset("pikachu-manga")
    block = TextBlock(
        "Biology",
        ((TextSpan("Body."),),),
        images=(figure.ref, missing.ref),
    )

    fragment = build_fragment(
        pikachu(text_blocks=(block,)),
        [asset("0025pikachu")],
        {figure.ref: figure},
    )
    root = parse(fragment)

    images = root.findall(".//h:div[@class='text-block']/h:div[@class='body-images']/h:div", NS)
    assert len(images) == 1
    assert images[0].find("h:img", NS).get("src") == "images/pikachu-anime.webp"
    assert images[0].findtext("h:div[@class='image-caption']", namespaces=NS) == "In the anime"
    assert fragment.image_paths == ("images/0025pikachu.webp", "images/pikachu-anime.webp")
