# =============================================
# File: astro_ai/cli/index_kb.py
# Purpose: CLI entrypoint to index a KB folder (markdown/txt) into the vector store.
# Usage:
#   python -m astro_ai.cli.index_kb --kb astro_ai/data/kb --backend chroma
# =============================================
from __future__ import annotations
import argparse
import os
import re
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Tuple

from astro_ai.config import SearchConfig
from astro_ai.services.vector_store import VectorStore
from astro_ai.utils.errors import ServiceError

DEFAULT_KB_DIR = os.getenv("KB_DIR", str(Path(__file__).resolve().parents[1] / "data" / "kb"))
EXTS = {".md", ".txt"}

FM_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)


def read_text(path: Path) -> Tuple[Dict[str, str], str]:
    """Split optional `---` front matter (key: value lines) from the body."""
    raw = path.read_text(encoding="utf-8", errors="ignore")
    m = FM_RE.match(raw)
    fm: Dict[str, str] = {}
    if not m:
        return fm, raw
    for line in m.group(1).splitlines():
        if ":" in line:
            k, v = line.split(":", 1)
            fm[k.strip()] = v.strip().strip('"').strip("'")
    return fm, raw[m.end():]


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 120) -> List[str]:
    # paragraph packer with a character overlap between consecutive chunks
    paras = [p.strip() for p in text.split("\n\n") if p.strip()]
    chunks: List[str] = []
    buf: List[str] = []
    cur = 0
    for p in paras:
        if cur + len(p) + 1 > chunk_size and buf:
            chunks.append(" ".join(buf).strip())
            tail = chunks[-1][max(0, len(chunks[-1]) - overlap):]
            buf = [tail, p]
            cur = len(tail) + len(p) + 1
        else:
            buf.append(p)
            cur += len(p) + 1
    if buf:
        chunks.append(" ".join(buf).strip())
    return chunks


def index_directory(store: VectorStore, kb_dir: str, chunk_size: int = 800, overlap: int = 120) -> Tuple[int, int]:
    """Returns (num_files, num_chunks)."""
    root = Path(kb_dir)
    files = sorted(p for p in root.rglob("*") if p.suffix.lower() in EXTS)
    n_chunks = 0
    for path in files:
        fm, body = read_text(path)
        if not body.strip():
            continue
        rel = path.relative_to(root).as_posix()
        title = fm.get("title") or path.stem.replace("_", " ").replace("-", " ").title()
        category = fm.get("category") or (path.parent.name if path.parent != root else "general")
        for i, ch in enumerate(chunk_text(body, chunk_size=chunk_size, overlap=overlap)):
            store.add_document({
                "id": f"{rel}#{i:04d}",
                "text": ch,
                "metadata": {"title": title, "category": category, "source": fm.get("source", "astro_kb"),
                             "relpath": rel, "chunk_index": i},
            })
            n_chunks += 1
    return len(files), n_chunks


def main(argv=None) -> int:
    cfg = SearchConfig.from_env()
    ap = argparse.ArgumentParser(description="Index a KB folder into the vector store.")
    ap.add_argument("--kb", default=DEFAULT_KB_DIR, help="KB root directory")
    ap.add_argument("--backend", default="chroma", choices=["memory", "chroma"], help="Index backend (default: chroma)")
    ap.add_argument("--persist", default=cfg.chroma_path, help=f"Chroma persist dir (default: {cfg.chroma_path})")
    ap.add_argument("--collection", default=cfg.chroma_collection, help=f"Chroma collection (default: {cfg.chroma_collection})")
    ap.add_argument("--chunk-size", type=int, default=800, help="Chunk size in characters (default: 800)")
    ap.add_argument("--overlap", type=int, default=120, help="Overlap in characters (default: 120)")
    args = ap.parse_args(argv)

    if not Path(args.kb).is_dir():
        print(f"[WARN] KB directory not found: {args.kb}", file=sys.stderr)
        return 1

    store = VectorStore(config=replace(cfg, backend=args.backend, chroma_path=args.persist,
                                       chroma_collection=args.collection))
    try:
        files, chunks = index_directory(store, args.kb, chunk_size=args.chunk_size, overlap=args.overlap)
    except ServiceError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 2

    if files == 0:
        print("[WARN] No markdown/txt files found. Check --kb path.", file=sys.stderr)
        return 1
    print(f"[OK] Indexed {files} files ({chunks} chunks) into {args.backend}:{args.collection}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
