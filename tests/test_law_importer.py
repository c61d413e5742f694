import json

from services.ingestion.law_importer import (
    find_json_files,
    import_laws,
    main,
    make_document_id,
    parse_law,
)
from shared.models.document import DocumentStatus


def write_law(path, title="Zivilgesetzbuch", language="deu"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            {
                "data": {"type": "jolux:Work", "uri": "https://fedlex.data.admin.ch/eli/cc/24/233_245_233"},
                "included": [
                    {
                        "type": "jolux:Expression",
                        "attributes": {"title": {"xsd:string": title}},
                        "references": {"language": f"http://publications.europa.eu/resource/authority/language/{language.upper()}"},
                    }
                ],
            },
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )
    return path


def test_parse_law_extracts_title_language_and_path(tmp_path):
    file_path = write_law(tmp_path / "eli" / "cc" / "24" / "de.json")

    document = parse_law(file_path, tmp_path)

    assert document.title == "Zivilgesetzbuch"
    assert document.metadata["language"] == "DEU"
    assert document.metadata["path"] == "eli/cc/24/de.json"
    assert document.metadata["fileName"] == "de.json"
    assert document.id == make_document_id("eli/cc/24/de.json")
    assert document.content["included"][0]["attributes"]["title"]["xsd:string"] == "Zivilgesetzbuch"


def test_parse_law_falls_back_to_file_name(tmp_path):
    file_path = tmp_path / "misc.json"
    file_path.write_text(json.dumps({"data": {}}), encoding="utf-8")

    document = parse_law(file_path, tmp_path)

    assert document.title == "misc.json"
    assert "language" not in document.metadata


def test_document_id_is_deterministic():
    assert make_document_id("eli/cc/1.json") == make_document_id("eli/cc/1.json")
    assert make_document_id("eli/cc/1.json") != make_document_id("eli/cc/2.json")


def test_find_json_files_is_sorted(tmp_path):
    write_law(tmp_path / "b" / "2.json")
    write_law(tmp_path / "a" / "1.json")
    (tmp_path / "a" / "notes.txt").write_text("x")

    assert [p.relative_to(tmp_path).as_posix() for p in find_json_files(tmp_path)] == ["a/1.json", "b/2.json"]


async def test_import_laws_upserts_and_skips_broken_files(tmp_path, helper_config, store):
    root = tmp_path / "laws"
    for i in range(5):
        write_law(root / "eli" / "cc" / f"{i}.json", title=f"Law {i}")
    (root / "eli" / "broken.json").write_text("{not json", encoding="utf-8")
    (root / "eli" / "list.json").write_text("[1, 2]", encoding="utf-8")

    assert await import_laws(helper_config, store, root, batch_size=2) == 5
    assert await store.count_documents() == 5

    # re-import updates in place
    ids = [make_document_id(f"eli/cc/{i}.json") for i in range(5)]
    await store.update_documents_status(ids, DocumentStatus.INDEXED)
    write_law(root / "eli" / "cc" / "0.json", title="Law 0 amended")

    assert await import_laws(helper_config, store, root, batch_size=10) == 5
    assert await store.count_documents() == 5
    amended = await store.get_document(ids[0])
    assert amended.title == "Law 0 amended"
    assert amended.status == DocumentStatus.PENDING


async def test_main_aborts_on_missing_directory(tmp_path, env, store):
    await main([str(tmp_path / "nope")])
    assert await store.count_documents() == 0
