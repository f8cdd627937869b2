from .common import PostStatus, EventStatus
from .user import User
from .post import Post, PostMedia, PostReport
from .event import Event
from .news import News
