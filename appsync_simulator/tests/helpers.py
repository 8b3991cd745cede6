"""
Shared test doubles and sample schema for the simulator test suite.
"""

import asyncio
from typing import Any

TEST_API_KEY = "da2-testkey0000000000000000"

SAMPLE_SDL = """
type Post {
  id: ID!
  title: String!
  author: String
  version: Int
}

input CreatePostInput {
  id: ID
  title: String!
  author: String
}

input UpdatePostInput {
  id: ID!
  title: String
}

type Query {
  getPost(id: ID!): Post
  listPosts: [Post!]!
}

type Mutation {
  createPost(input: CreatePostInput!): Post
  updatePost(input: UpdatePostInput!): Post
  deletePost(id: ID!): Post
}

type Subscription {
  onCreatePost(id: ID, author: String): Post @aws_subscribe(mutations: ["createPost"])
  onUpdatePost(id: ID): Post @aws_subscribe(mutations: ["updatePost"])
  onMutatePost: Post @aws_subscribe(mutations: ["createPost", "updatePost", "deletePost"])
}
"""

ON_CREATE_POST = "subscription OnCreate { onCreatePost { id title author } }"
ON_CREATE_POST_BY_ID = "subscription OnCreate($id: ID) { onCreatePost(id: $id) { id title } }"
CREATE_POST = "mutation Create($input: CreatePostInput!) { createPost(input: $input) { id title author version } }"


class PostStore:
    """Minimal in-memory data source behind the sample resolvers."""

    def __init__(self) -> None:
        self.posts: dict[str, dict[str, Any]] = {}
        self._next_id = 1

    def create(self, _obj: Any, _info: Any, input: dict[str, Any]) -> dict[str, Any]:  # noqa: A002
        post_id = input.get("id") or str(self._next_id)
        self._next_id += 1
        post = {"id": post_id, "title": input["title"], "author": input.get("author"), "version": 1}
        self.posts[post_id] = post
        return post

    def update(self, _obj: Any, _info: Any, input: dict[str, Any]) -> dict[str, Any] | None:  # noqa: A002
        post = self.posts.get(input["id"])
        if post is None:
            return None
        if input.get("title") is not None:
            post["title"] = input["title"]
        post["version"] += 1
        return post

    def delete(self, _obj: Any, _info: Any, id: str) -> dict[str, Any] | None:  # noqa: A002
        return self.posts.pop(id, None)

    def get(self, _obj: Any, _info: Any, id: str) -> dict[str, Any] | None:  # noqa: A002
        return self.posts.get(id)

    def list(self, _obj: Any, _info: Any) -> list[dict[str, Any]]:
        return list(self.posts.values())


class FakeTransport:
    """RealtimeTransport that records frames instead of writing to a socket."""

    def __init__(self, fail_on_send: bool = False):
        self.frames: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.fail_on_send = fail_on_send

    async def send_json(self, frame: dict[str, Any]) -> None:
        if self.fail_on_send:
            raise ConnectionResetError("peer reset")
        self.frames.append(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]

    def of_type(self, frame_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.frames if frame["type"] == frame_type]


async def settle(*connections: Any) -> None:
    """Wait until each connection's outbox has been fully processed."""
    await asyncio.sleep(0)
    for connection in connections:
        await asyncio.wait_for(connection.drain(), timeout=2.0)
