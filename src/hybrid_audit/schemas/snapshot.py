"""Pydantic schemas for the Layer-2 page snapshot."""

from typing import List, Optional

from pydantic import BaseModel


class HeadingInfo(BaseModel):
    level: int
    text: str
    position: int


class AnchorInfo(BaseModel):
    text: str
    href: str
    is_internal: bool


class SchemaInfo(BaseModel):
    type: str
    has_required_props: bool
    raw: str = ""


class OpenGraphData(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    image: Optional[str] = None
    url: Optional[str] = None
    site_name: Optional[str] = None


class TwitterCardData(BaseModel):
    card: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    site: Optional[str] = None


class ImageInfo(BaseModel):
    src: str
    alt: Optional[str] = None
    missing_alt: bool
    width: Optional[str] = None
    height: Optional[str] = None
    loading: Optional[str] = None
    likely_above_fold: bool = False


class HreflangInfo(BaseModel):
    lang: str
    href: str


class PageSnapshot(BaseModel):
    url: str
    title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_robots: Optional[str] = None
    canonical: Optional[str] = None
    headings: List[HeadingInfo] = []
    nav_anchors: List[AnchorInfo] = []
    internal_link_count: int = 0
    external_link_count: int = 0
    schemas: List[SchemaInfo] = []
    has_forms: bool = False
    open_graph: OpenGraphData = OpenGraphData()
    twitter_card: TwitterCardData = TwitterCardData()
    images: List[ImageInfo] = []
    lang: Optional[str] = None
    viewport: Optional[str] = None
    charset: Optional[str] = None
    hreflang: List[HreflangInfo] = []
    word_count: int = 0
    is_thin_content: bool = True

    def schema_types(self) -> List[str]:
        return [s.type for s in self.schemas]

    def has_schema(self, *types: str) -> bool:
        return any(s.type in types for s in self.schemas)


class ExtractionResult(BaseModel):
    snapshot: PageSnapshot
    warnings: List[str] = []
    errors: List[str] = []
    duration_ms: int = 0


class Layer2Result(BaseModel):
    homepage: PageSnapshot
    homepage_warnings: List[str] = []
    pdp: Optional[PageSnapshot] = None
    duration_ms: int = 0
