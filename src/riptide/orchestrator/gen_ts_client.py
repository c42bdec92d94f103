"""Render `client.ts`: the fetch/SSE runtime plus one typed member per method."""
from __future__ import annotations

import json

from riptide.orchestrator.gen_ts_types import TypeEmitterConfig, TypeScriptRenderer, file_header, finish, property_name
from riptide.orchestrator.schema import EMPTY, MethodNode, Origin, Schema

STREAMING_PRIMITIVES = frozenset({"stream", "atom"})

_RUNTIME = r'''
export class RPCError extends Error {
  readonly kind = "rpc" as const;
  code: string;
  httpStatus: number;
  details: Record<string, unknown>;

  constructor(code: string, message: string, httpStatus: number, details?: Record<string, unknown>) {
    super(message);
    this.name = "RPCError";
    this.code = code;
    this.httpStatus = httpStatus;
    this.details = details ?? {};
  }
}

export class TransportError extends Error {
  readonly kind = "transport" as const;
  httpStatus: number;
  rawBody?: string;

  constructor(message: string, httpStatus: number, rawBody?: string) {
    super(message);
    this.name = "TransportError";
    this.httpStatus = httpStatus;
    this.rawBody = rawBody;
  }
}

export type FetchFunction = (url: string, init?: RequestInit) => Promise<Response>;

export interface RPCConfig {
  baseUrl: string;
  headers?: () => Record<string, string>;
  fetch?: FetchFunction;
}

export interface Subscription<T> {
  subscribe(onValue: (value: T) => void, onError?: (error: Error) => void): () => void;
  close(): void;
  current(): T | undefined;
}

type MethodKey = keyof typeof metadata;

interface ErrorBody {
  code?: string;
  message?: string;
  details?: Record<string, unknown>;
}

function queryValue(value: unknown): string {
  return typeof value === "object" && value !== null ? JSON.stringify(value) : String(value);
}

function buildRequest(config: RPCConfig, key: MethodKey, req: unknown): { url: string; init: RequestInit } {
  const meta = metadata[key];
  const headers: Record<string, string> = config.headers ? { ...config.headers() } : {};
  let url = config.baseUrl.replace(/\/+$/, "") + meta.path;
  const init: RequestInit = { method: meta.method, headers };
  if (meta.method === "GET") {
    const params = new URLSearchParams();
    const body = (req ?? {}) as Record<string, unknown>;
    for (const name of Object.keys(body).sort()) {
      const value = body[name];
      if (Array.isArray(value)) {
        value.forEach((item) => params.append(name, queryValue(item)));
      } else if (value !== undefined && value !== null) {
        params.append(name, queryValue(value));
      }
    }
    const qs = params.toString();
    if (qs) {
      url += "?" + qs;
    }
  } else {
    headers["Content-Type"] = "application/json";
    init.body = JSON.stringify(req ?? {});
  }
  return { url, init };
}

function parseEnvelope(rawBody: string, httpStatus: number, statusText: string): unknown {
  let envelope: { result?: unknown; error?: ErrorBody } | null;
  try {
    envelope = JSON.parse(rawBody);
  } catch {
    throw new TransportError(statusText || "Failed to parse response", httpStatus, rawBody.slice(0, 1000));
  }
  if (!envelope || typeof envelope !== "object" || (!("result" in envelope) && !("error" in envelope))) {
    throw new TransportError("Invalid response format: missing result or error field", httpStatus, rawBody.slice(0, 1000));
  }
  if (envelope.error) {
    throw new RPCError(
      envelope.error.code || "unknown",
      envelope.error.message || "Unknown error",
      httpStatus,
      envelope.error.details,
    );
  }
  return envelope.result;
}

async function call<T>(config: RPCConfig, key: MethodKey, req: unknown): Promise<T> {
  const fetchFn = config.fetch ?? globalThis.fetch;
  const { url, init } = buildRequest(config, key, req);
  const res = await fetchFn(url, init);
  const rawBody = await res.text();
  return parseEnvelope(rawBody, res.status, res.statusText) as T;
}

function stream<T>(config: RPCConfig, key: MethodKey, req: unknown): Subscription<T> {
  const fetchFn = config.fetch ?? globalThis.fetch;
  const listeners = new Set<{ onValue: (value: T) => void; onError?: (error: Error) => void }>();
  let latest: T | undefined;
  let hasValue = false;
  let closed = false;
  let controller: AbortController | null = null;
  let lastEventId = "";

  const emitError = (error: Error) => {
    for (const listener of Array.from(listeners)) {
      listener.onError?.(error);
    }
  };

  const start = () => {
    const own = new AbortController();
    controller = own;
    const { url, init } = buildRequest(config, key, req);
    init.signal = own.signal;
    const headers: Record<string, string> = { ...(init.headers as Record<string, string>), Accept: "text/event-stream" };
    if (lastEventId) {
      headers["Last-Event-ID"] = lastEventId;
    }
    init.headers = headers;

    (async () => {
      const res = await fetchFn(url, init);
      if (!res.ok || !res.body) {
        parseEnvelope(await res.text(), res.status, res.statusText);
        throw new TransportError(res.statusText || "Stream failed", res.status);
      }
      const reader = res.body.getReader();
      const decoder = new TextDecoder();
      let buffer = "";
      for (;;) {
        const { value, done } = await reader.read();
        if (done) {
          break;
        }
        buffer += decoder.decode(value, { stream: true });
        let boundary = buffer.indexOf("\n\n");
        while (boundary >= 0) {
          const event = buffer.slice(0, boundary);
          buffer = buffer.slice(boundary + 2);
          boundary = buffer.indexOf("\n\n");
          const lines = event.split("\n");
          for (const line of lines) {
            if (line.startsWith("id:")) {
              lastEventId = line.slice(3).trim();
            }
          }
          const data = lines
            .filter((line) => line.startsWith("data:"))
            .map((line) => line.slice(5).trimStart())
            .join("\n");
          if (!data) {
            continue;
          }
          try {
            latest = parseEnvelope(data, res.status, res.statusText) as T;
            hasValue = true;
          } catch (err) {
            emitError(err as Error);
            continue;
          }
          for (const listener of Array.from(listeners)) {
            listener.onValue(latest as T);
          }
        }
      }
    })()
      .catch((err) => {
        if (!own.signal.aborted) {
          emitError(err instanceof Error ? err : new TransportError(String(err), 0));
        }
      })
      .finally(() => {
        if (controller === own) {
          controller = null;
        }
      });
  };

  const stop = () => {
    controller?.abort();
    controller = null;
  };

  return {
    subscribe(onValue, onError) {
      const listener = { onValue, onError };
      listeners.add(listener);
      if (hasValue) {
        onValue(latest as T);
      }
      if (!controller && !closed) {
        start();
      }
      return () => {
        listeners.delete(listener);
        if (listeners.size === 0) {
          stop();
        }
      };
    },
    close() {
      closed = true;
      listeners.clear();
      stop();
    },
    current() {
      return latest;
    },
  };
}
'''


def _member(method: MethodNode, renderer: TypeScriptRenderer) -> list[str]:
    request = renderer.ref(method.request)
    response = renderer.ref(method.response)
    param = f"req: {request} = {{}}" if method.request == EMPTY else f"req: {request}"
    lines = [f"      /** {method.key} ({method.http_method} {method.path}) */"]
    if method.kind in STREAMING_PRIMITIVES:
        lines.append(
            f"      {property_name(method.name)}: ({param}): Subscription<{response}> =>"
            f" stream<{response}>(config, {json.dumps(method.key)}, req),"
        )
    else:
        lines.append(
            f"      {property_name(method.name)}: ({param}): Promise<{response}> =>"
            f" call<{response}>(config, {json.dumps(method.key)}, req),"
        )
    return lines


def render_client(
    schema: Schema,
    names: dict[Origin, str],
    config: TypeEmitterConfig,
    *,
    types_import: str = "./types",
) -> str:
    renderer = TypeScriptRenderer({origin: f"types.{name}" for origin, name in names.items()}, config)

    by_service: dict[str, list[MethodNode]] = {}
    for method in sorted(schema.methods, key=lambda item: item.key):
        by_service.setdefault(method.service, []).append(method)

    lines = file_header(config.frontmatter)
    lines.append(f'import type * as types from "{types_import}";')
    lines.append('import { metadata } from "./manifest";')
    lines.extend(_RUNTIME.rstrip("\n").splitlines())
    lines.append("")
    lines.append("export function createClient(config: RPCConfig) {")
    lines.append("  return {")
    for service in sorted(by_service):
        lines.append(f"    {property_name(service)}: {{")
        for method in by_service[service]:
            lines.extend(_member(method, renderer))
        lines.append("    },")
    lines.append("  };")
    lines.append("}")
    lines.append("")
    lines.append("export type Client = ReturnType<typeof createClient>;")
    return finish(lines)
