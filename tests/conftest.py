import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

import pytest

from citation_verifier.app import CitationCheckerApp
from citation_verifier.config import CheckerConfig
from citation_verifier.store import DocumentStore

SAMPLE_TEI = """<?xml version="1.0" encoding="UTF-8"?>
<TEI xmlns="http://www.tei-c.org/ns/1.0">
  <teiHeader>
    <fileDesc>
      <titleStmt>
        <title level="a" type="main">Deep Learning for NLP</title>
      </titleStmt>
      <publicationStmt>
        <publisher>ACL</publisher>
        <date type="published" when="2021-05-01">May 2021</date>
      </publicationStmt>
      <sourceDesc>
        <biblStruct>
          <analytic>
            <author>
              <persName><forename type="first">Jane</forename><forename type="middle">Q</forename><surname>Smith</surname></persName>
              <affiliation><orgName>MIT</orgName></affiliation>
            </author>
            <title level="a" type="main">Deep Learning for NLP</title>
            <idno type="DOI">10.1000/DL4NLP</idno>
          </analytic>
          <monogr>
            <title level="j">Journal of AI</title>
            <imprint><date type="published" when="2021"/></imprint>
          </monogr>
        </biblStruct>
      </sourceDesc>
    </fileDesc>
  </teiHeader>
  <text>
    <body>
      <div>
        <head>Introduction</head>
        <p>Transformers changed the field <ref type="bibr" target="#b1" coords="2,100.5,200.1,30.2,10.0">[1]</ref>. They rely on attention.</p>
      </div>
    </body>
    <back>
      <div type="references">
        <listBibl>
          <biblStruct xml:id="b1">
            <analytic>
              <title level="a" type="main">Attention Is All You Need</title>
              <author><persName><forename type="first">Ashish</forename><surname>Vaswani</surname></persName></author>
              <idno type="DOI">https://doi.org/10.5555/Attention</idno>
            </analytic>
            <monogr>
              <title level="m">Advances in Neural Information Processing Systems</title>
              <imprint>
                <biblScope unit="volume">30</biblScope>
                <biblScope unit="page" from="5998" to="6008"/>
                <date type="published" when="2017"/>
              </imprint>
            </monogr>
            <note type="raw_reference">[1] Vaswani A. Attention Is All You Need. NeurIPS 2017.</note>
          </biblStruct>
        </listBibl>
      </div>
    </back>
  </text>
</TEI>
"""


def build_tei(paragraphs, entries, title="Citing Paper", header_extra=""):
    """Assemble a small GROBID-style TEI document.

    ``paragraphs`` are inserted verbatim into ``<body>``; ``entries`` are
    ``biblStruct`` fragments placed in the ``listBibl``.
    """

    body = "\n".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)
    bibl = "\n".join(entries)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<TEI xmlns="http://www.tei-c.org/ns/1.0">
  <teiHeader>
    <fileDesc>
      <titleStmt><title level="a" type="main">{title}</title></titleStmt>
      {header_extra}
    </fileDesc>
  </teiHeader>
  <text>
    <body><div>{body}</div></body>
    <back><div type="references"><listBibl>{bibl}</listBibl></div></back>
  </text>
</TEI>
"""


def bibl_entry(xml_id, title, surname="Doe", year="2020", doi=None, label=None):
    idno = f'<idno type="DOI">{doi}</idno>' if doi else ""
    raw = f'<note type="raw_reference">[{label}] {surname}. {title}. {year}.</note>' if label else ""
    return f"""<biblStruct xml:id="{xml_id}">
  <analytic>
    <title level="a" type="main">{title}</title>
    <author><persName><surname>{surname}</surname></persName></author>
    {idno}
  </analytic>
  <monogr><imprint><date type="published" when="{year}"/></imprint></monogr>
  {raw}
</biblStruct>"""


@pytest.fixture()
def sample_tei() -> str:
    return SAMPLE_TEI


@pytest.fixture()
def config(tmp_path: Path) -> CheckerConfig:
    return CheckerConfig(
        document_db_path=tmp_path / "db",
        grobid_url="http://grobid.test",
        grobid_backoff=0.0,
        gemini_api_key="test-key",
        gemini_endpoint="http://gemini.test/v1beta/models",
    )


@pytest.fixture()
def store(config: CheckerConfig) -> DocumentStore:
    return DocumentStore.from_config(config)


@pytest.fixture()
def checker(config: CheckerConfig, store: DocumentStore) -> CitationCheckerApp:
    return CitationCheckerApp(config=config, store=store)


@pytest.fixture()
def attention_source(checker: CitationCheckerApp):
    """Store the cited paper so verification can find it."""

    xml = build_tei(
        ["We propose the Transformer, based solely on attention mechanisms."],
        [],
        title="Attention Is All You Need",
    )
    return checker.ingest_tei(xml, source_path="attention.pdf")
