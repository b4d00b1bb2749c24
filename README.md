# filecloud

A small self-contained file-sharing HTTP server. Users register and log in,
upload files as `multipart/form-data`, list and delete their files, and share
them publicly, behind an extraction code, or with one specific user.
Downloads are sent with chunked transfer encoding, and a `Range` header sets
the byte where streaming starts.

Accounts, sessions, file records and shares are kept in a local SQLite
database (`filecloud.store.Store`). A session lasts 30 minutes and is
extended each time it is validated.

## Installing

```
pip install .
```

## Running

```
filecloud
```

Options:

| Option          | Default          | Meaning                                        |
|-----------------|------------------|------------------------------------------------|
| `--host`        | `0.0.0.0`        | Address to listen on                           |
| `--port`        | `8080`           | Port to listen on                              |
| `--upload-dir`  | `uploads`        | Directory where uploaded files are stored      |
| `--map-file`    | `file_map.json`  | JSON file of the stored file-name map          |
| `--database`    | `filecloud.db`   | SQLite database path                           |
| `--static-dir`  | `filecloud/static` inside the package | Directory of the HTML pages and icon |

The server is a threaded `http.server` server; stop it with Ctrl-C, which
saves the file-name map and closes the database.

## Endpoints

| Method   | Path                               | Purpose                                      |
|----------|------------------------------------|----------------------------------------------|
| GET      | `/`, `/index.html`                 | `index.html` from the static directory       |
| GET      | `/register.html`                   | `register.html` from the static directory    |
| GET      | `/favicon.ico`                     | `favicon.ico` from the static directory      |
| POST     | `/register`                        | Create an account (`username`, `password`, optional `email`) |
| POST     | `/login`                           | Log in; sets the `session_id` cookie         |
| POST     | `/logout`                          | Delete the session                           |
| GET      | `/users/search?keyword=...`        | Find other users (at most 10)                |
| POST     | `/upload`                          | Upload a file                                |
| GET      | `/files`                           | List files; `type` header `my`, `shared` or `all` (default `my`) |
| GET/HEAD | `/download/<name>`                 | Download a stored file                       |
| DELETE   | `/delete/<name>`                   | Delete a file you own                        |
| POST     | `/share`                           | Share a file, or make it private             |
| GET      | `/share/<code>`                    | `share.html`, or share details as JSON when the request sends `X-Requested-With: XMLHttpRequest` or accepts `application/json` |
| GET      | `/share/info/<code>`               | Share details (`extract_code` query parameter for protected shares) |
| GET      | `/share/download/<name>?code=...`  | Download through a share link                |

JSON replies carry a `code` field (0 on success, otherwise the HTTP status)
and a `message`.

`POST /share` takes a JSON body with `fileId` and `shareType` (`private`,
`public`, `protected` or `user`), and optionally `expireTime` in hours and,
for `user` shares, `sharedWithId`. A protected share returns a four
character `extractCode`; every share returns a 32 character `shareCode` and
a `shareLink`.

`/download/<name>` takes the session from the `session_id` cookie or a
`sessionId` query parameter, and accepts `code` and `extract_code` query
parameters to download through a share.

## Using it from Python

```python
from filecloud.app import FileCloudApp
from filecloud.server import make_server
from filecloud.store import Store

app = FileCloudApp("uploads", "filemap.json", Store("filecloud.db"), "static")
server = make_server(app, "127.0.0.1", 8080)
try:
    server.serve_forever()
finally:
    server.server_close()
    app.close()
```

`FileCloudApp.handle(request)` can also be called directly with a
`filecloud.http.Request`; it returns a `Response` and, for downloads, an
iterator of chunked body frames (otherwise `None`).

The building blocks are usable on their own:

- `filecloud.upload.UploadContext` writes the file part of a multipart body
  to disk; `extract_boundary` and `extract_filename` read the boundary and
  the part's file name.
- `filecloud.download.DownloadContext` reads a file in 1 MiB chunks;
  `parse_range`, `encode_chunk` and `iter_chunked` handle ranges and chunked
  framing.
- `filecloud.filemap.FileNameMap` is a thread-safe mapping saved as JSON.
- `filecloud.router.Router` matches requests by method and path pattern.

## What it does not include

- No HTML pages or icon are shipped. `index.html`, `register.html`,
  `share.html` and `favicon.ico` must be provided in the static directory;
  without them the pages answer 500 and the icon 404.
- An upload must arrive as a single request: the part's content is taken
  from after its header block up to the closing boundary of that one body.
- A `Range` header sets where streaming starts and is reported in
  `Content-Range`; the body runs on to the end of the file.
- There is no TLS; put the server behind a proxy that terminates HTTPS if
  it needs one.

## Tests

```
pip install .[test]
pytest
```