from pydantic import BaseModel
from typing import Any, List, Optional
import enum


class FeedSectionType(str, enum.Enum):
    BOOKS = "books"
    NEWS = "news"


class NewsArticle(BaseModel):
    title: str
    summary: str = ""
    url: Optional[str] = None
    source: str = ""
    date: str = ""


class FeedSection(BaseModel):
    id: str
    title: str
    type: FeedSectionType
    # Books for book sections, NewsArticles for the news section
    data: List[Any]
