import base64
import collections
import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from kanjiblock.blocks import BlockData, load_blocks
from kanjiblock.config import StyleConfig
from kanjiblock.diagnostics import log_context
from kanjiblock.engine.encode import encode_jpeg_fit, encode_png
from kanjiblock.engine.export import ExportManager
from kanjiblock.engine.pipeline import flush_timing, get_render_stats, run_pass
from kanjiblock.errors import KanjiBlockError
from kanjiblock.security import (
    validate_batch_size,
    validate_block_file,
    validate_canvas_size,
    validate_output_path,
)
from kanjiblock.style import schema
from kanjiblock.style.metadata import build_token_metadata, extract_attributes
from kanjiblock.style.params import PARAMS

logger = logging.getLogger(__name__)


class ZMQServer:
    def __init__(self, config: StyleConfig | None = None):
        self.config = config or StyleConfig.from_env()
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, 1_048_576)  # 1 MB limit
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket — never blocked by heavy renders
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token — prevents unauthorized ZMQ access from other local processes
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.block_files: collections.OrderedDict[str, list[BlockData]] = (
            collections.OrderedDict()
        )
        self._max_block_files = 10
        self.last_render_ms = 0.0
        self.export_manager = ExportManager()
        self.style = schema.new_style_metadata(name="kanjiblock")

    def reset_state(self):
        """Clear accumulated state without closing sockets/context.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        self.block_files.clear()
        self.export_manager.cancel()
        self.export_manager = ExportManager()
        self.style = schema.new_style_metadata(name="kanjiblock")
        self.last_render_ms = 0.0
        flush_timing()

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_render_ms": self.last_render_ms,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        logger.debug("Handling %s", cmd, extra=log_context(cmd=cmd, msg_id=msg_id))

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "list_params":
            return {"id": msg_id, "ok": True, "params": PARAMS}
        elif cmd == "style_metadata":
            return self._handle_style_metadata(message, msg_id)
        elif cmd == "render":
            return self._handle_render(message, msg_id)
        elif cmd == "attributes":
            return self._handle_attributes(message, msg_id)
        elif cmd == "export_start":
            return self._handle_export_start(message, msg_id)
        elif cmd == "export_status":
            return {"id": msg_id, "ok": True, **self.export_manager.get_status()}
        elif cmd == "export_cancel":
            return {"id": msg_id, "ok": True, "cancelled": self.export_manager.cancel()}
        elif cmd == "render_stats":
            return {"id": msg_id, "ok": True, "stats": get_render_stats()}
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _error(self, msg_id: str | None, e: Exception) -> dict:
        response = {"id": msg_id, "ok": False, "error": str(e)}
        if isinstance(e, KanjiBlockError):
            response["error_kind"] = type(e).__name__
        return response

    def _resolve_block(self, message: dict) -> BlockData:
        """Block from an inline record or from (path, number|index).

        Raises:
            ValueError: On a missing, invalid or unknown block.
        """
        inline = message.get("block")
        if inline is not None:
            return BlockData.from_dict(inline)

        path = message.get("path")
        if not path:
            raise ValueError("missing block or path")
        blocks = self._get_block_file(path)

        if message.get("number") is not None:
            number = int(message["number"])
            for block in blocks:
                if block.number == number:
                    return block
            raise ValueError(f"block {number} not found in file")

        index = int(message.get("index", 0))
        if not 0 <= index < len(blocks):
            raise ValueError(f"index {index} out of range for {len(blocks)} blocks")
        return blocks[index]

    def _get_block_file(self, path: str) -> list[BlockData]:
        if path in self.block_files:
            self.block_files.move_to_end(path)
            return self.block_files[path]

        # SEC-1: Validate block file
        errors = validate_block_file(path)
        if errors:
            raise ValueError("; ".join(errors))

        while len(self.block_files) >= self._max_block_files:
            self.block_files.popitem(last=False)
        blocks = load_blocks(path)
        self.block_files[path] = blocks
        return blocks

    def _handle_style_metadata(self, message: dict, msg_id: str | None) -> dict:
        update = message.get("style")
        if update is not None:
            if not isinstance(update, dict):
                return {"id": msg_id, "ok": False, "error": "style must be an object"}
            candidate = {**self.style, **update}
            errors = schema.validate(candidate)
            if errors:
                return {"id": msg_id, "ok": False, "error": "; ".join(errors)}
            self.style = candidate
        return {"id": msg_id, "ok": True, "style": self.style}

    def _handle_render(self, message: dict, msg_id: str | None) -> dict:
        width = message.get("width", 500)
        height = message.get("height", 500)
        image_format = message.get("format", "png")
        if image_format not in ("png", "jpeg"):
            return {"id": msg_id, "ok": False, "error": f"unknown format: {image_format}"}

        # SEC-2: Validate canvas size
        errors = validate_canvas_size(width, height)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            block = self._resolve_block(message)
            t0 = time.time()
            # Each request is a fresh pass over the full parameter snapshot
            result = run_pass(
                block,
                message.get("params") or {},
                width=width,
                height=height,
                config=self.config,
            )
            if image_format == "png":
                image_bytes = encode_png(result.frame)
            else:
                image_bytes, _ = encode_jpeg_fit(result.frame)
            self.last_render_ms = round((time.time() - t0) * 1000, 2)
        except (TypeError, ValueError) as e:
            logger.info(
                "Render rejected: %s",
                type(e).__name__,
                extra=log_context(cmd="render", msg_id=msg_id),
            )
            return self._error(msg_id, e)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error(
                "Render handler error: %s",
                type(e).__name__,
                extra=log_context(cmd="render", msg_id=msg_id),
            )
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

        return {
            "id": msg_id,
            "ok": True,
            "block_number": block.number,
            "seed": f"{result.seed:016x}",
            "derived": result.derived.to_dict(),
            "glyph": result.glyph,
            "params": result.params,
            "attributes": extract_attributes(result),
            "frame_data": base64.b64encode(image_bytes).decode("ascii"),
            "format": image_format,
            "width": width,
            "height": height,
        }

    def _handle_attributes(self, message: dict, msg_id: str | None) -> dict:
        """Metadata for a block without returning the image."""
        try:
            block = self._resolve_block(message)
            result = run_pass(
                block,
                message.get("params") or {},
                width=message.get("width", 500),
                height=message.get("height", 500),
                config=self.config,
            )
        except (TypeError, ValueError) as e:
            return self._error(msg_id, e)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error(
                "Attributes handler error: %s",
                type(e).__name__,
                extra=log_context(cmd="attributes", msg_id=msg_id),
            )
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}
        return {
            "id": msg_id,
            "ok": True,
            "metadata": build_token_metadata(result, self.style),
        }

    def _handle_export_start(self, message: dict, msg_id: str | None) -> dict:
        output_dir = message.get("output_dir")
        if not output_dir:
            return {"id": msg_id, "ok": False, "error": "missing output_dir"}

        errors = validate_output_path(output_dir, directory=True)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        width = message.get("width", 500)
        height = message.get("height", 500)
        errors = validate_canvas_size(width, height)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            if message.get("blocks") is not None:
                blocks = [BlockData.from_dict(b) for b in message["blocks"]]
            else:
                path = message.get("path")
                if not path:
                    return {"id": msg_id, "ok": False, "error": "missing blocks or path"}
                blocks = self._get_block_file(path)
        except (TypeError, ValueError) as e:
            return self._error(msg_id, e)

        # SEC-3: Validate batch size
        errors = validate_batch_size(blocks)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            self.export_manager.start(
                blocks,
                output_dir,
                message.get("params") or {},
                width=width,
                height=height,
                config=self.config,
                style=self.style,
            )
        except RuntimeError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}

        return {"id": msg_id, "ok": True, "total_blocks": len(blocks)}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except (ValueError, AttributeError):
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except ValueError:
                    message = None
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                if not isinstance(message, dict):
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error(
                        "Unhandled handler error: %s",
                        type(e).__name__,
                        extra=log_context(
                            cmd=message.get("cmd"), msg_id=message.get("id")
                        ),
                    )
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.export_manager.cancel()
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
