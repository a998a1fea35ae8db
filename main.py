#!/usr/bin/env python3
"""
Command line entry point for the semantic analytics layer.

Every command prints JSON. The batch command reads questions from a text
file, runs each one through the natural-language path and saves one JSON
file per question plus a combined file.
"""

import os
import sys
import json
import time
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

from config import config
from semantic.errors import SemanticLayerError
from semantic.system import SemanticSystem
from semantic.types import QuerySpec


logger = logging.getLogger("semantic.cli")

# Global system instance, built on first use
semantic_system: Optional[SemanticSystem] = None


def setup_logging():
    """Configure logging with rotation."""
    directory = os.path.dirname(config.logging.file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    formatter = logging.Formatter(config.logging.format)

    file_handler = RotatingFileHandler(
        config.logging.file_path,
        maxBytes=config.logging.max_file_size,
        backupCount=config.logging.backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.WARNING)

    root.handlers = [file_handler, console_handler]
    logging.getLogger("semantic.memory").disabled = not config.logging.enable_performance_logging


def get_system() -> SemanticSystem:
    """Get or initialize the semantic system."""
    global semantic_system
    if semantic_system is None:
        semantic_system = SemanticSystem()
    return semantic_system


def emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def fail(error: Exception, code: int = 2) -> None:
    if isinstance(error, SemanticLayerError):
        emit({"success": False, **error.to_dict()})
    else:
        emit({"success": False, "error": type(error).__name__, "message": str(error)})
    sys.exit(code)


@click.group()
@click.option("--config-file", type=click.Path(dir_okay=False), default=None,
              help="JSON file overriding the default settings.")
def cli(config_file):
    """Semantic analytics layer: prompts and SQL to pivot-ready results."""
    if config_file:
        config.load_from_file(config_file)
    setup_logging()


@cli.command()
@click.argument("prompt")
@click.option("--pin", is_flag=True, help="Pin the result.")
def ask(prompt, pin):
    """Answer a natural-language question."""
    try:
        emit({"success": True, **get_system().ask(prompt, pin=pin).to_dict()})
    except (SemanticLayerError, RuntimeError, ValueError) as e:
        fail(e)
    except Exception as e:
        logger.error(f"Prompt failed: {e}")
        fail(e)


@cli.command()
@click.argument("query")
@click.option("--pin", is_flag=True, help="Pin the result.")
def sql(query, pin):
    """Run hand-written SQL through the pivot rewrite."""
    try:
        emit({"success": True, **get_system().run_sql(query, pin=pin).to_dict()})
    except (SemanticLayerError, ValueError) as e:
        fail(e)
    except Exception as e:
        logger.error(f"SQL query failed: {e}")
        fail(e)


@cli.command()
@click.option("--table", required=True, help="Semantic model key, e.g. sessions.")
@click.option("--measure", "measures", multiple=True, required=True)
@click.option("--dimension", "dimensions", multiple=True)
@click.option("--filter", "filters", multiple=True)
@click.option("--pin", is_flag=True, help="Pin the result.")
def spec(table, measures, dimensions, filters, pin):
    """Run a structured query spec."""
    query_spec = QuerySpec(table=table, measures=list(measures),
                           dimensions=list(dimensions), filters=list(filters))
    try:
        emit({"success": True, **get_system().run_spec(query_spec, pin=pin).to_dict()})
    except SemanticLayerError as e:
        fail(e)
    except Exception as e:
        logger.error(f"Query spec failed: {e}")
        fail(e)


@cli.command()
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("table_name")
@click.option("--profile/--no-profile", default=True, help="Profile the table after loading.")
def load(csv_path, table_name, profile):
    """Load a CSV file into a table."""
    system = get_system()
    info = system.db_manager.load_csv(csv_path, table_name)
    if profile:
        outcome = system.profile_table(table_name, force=True)
        info["profile_status"] = outcome.status
    emit({"success": True, **info})


@cli.command()
@click.argument("table_name")
@click.option("--force", is_flag=True, help="Profile again even if cached.")
def profile(table_name, force):
    """Profile a table and cache its column metadata."""
    try:
        outcome = get_system().profile_table(table_name, force=force)
    except SemanticLayerError as e:
        fail(e)
        return
    except Exception as e:
        logger.error(f"Profiling {table_name} failed: {e}")
        fail(e)
        return
    emit({
        "success": outcome.status != "at_limit",
        "status": outcome.status,
        "table_name": outcome.table_name,
        "columns": [c.to_dict() for c in outcome.columns],
        "cache": outcome.cache_status.to_dict() if outcome.cache_status else None,
    })
    if outcome.status == "at_limit":
        click.echo("Cache is full. Delete a cached table with 'cache delete <name>' first.", err=True)
        sys.exit(3)


@cli.group()
def cache():
    """Inspect and manage the table metadata cache."""


@cache.command("status")
def cache_status():
    emit(get_system().cache_status().to_dict())


@cache.command("delete")
@click.argument("table_name")
def cache_delete(table_name):
    emit({"deleted": get_system().delete_cached_table(table_name), "table_name": table_name})


@cache.command("delete-oldest")
def cache_delete_oldest():
    emit({"deleted": get_system().metadata_cache.delete_oldest()})


@cache.command("clear")
def cache_clear():
    get_system().clear_cache()
    emit({"cleared": True})


@cli.group()
def pins():
    """Inspect and manage pinned queries."""


@pins.command("list")
@click.option("--table", "table_name", default=None)
def pins_list(table_name):
    emit([item.to_dict() for item in get_system().pins(table_name)])


@pins.command("delete")
@click.argument("item_id")
def pins_delete(item_id):
    emit({"deleted": get_system().delete_pin(item_id), "id": item_id})


@pins.command("clear")
def pins_clear():
    get_system().clear_pins()
    emit({"cleared": True})


@cli.command()
def report():
    """Print the performance report."""
    emit(get_system().get_performance_report())


# ---------------- Batch processing -----------------
def read_questions_from_file(file_path: str) -> List[str]:
    """Read questions, skipping comments, blank lines and numbering."""
    questions = []

    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Questions file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            # "1. What is ..." -> "What is ..."
            head, sep, rest = line.partition('. ')
            if sep and head.isdigit():
                line = rest.strip()
            questions.append(line)

    logger.info(f"Loaded {len(questions)} questions from {file_path}")
    return questions


def process_question(system: SemanticSystem, question: str, question_id: int) -> Dict[str, Any]:
    """Run one question and shape the JSON response."""
    start_time = time.time()
    try:
        result = system.ask(question)
        response = {
            'success': True,
            'question': question,
            **result.to_dict(),
        }
    except (SemanticLayerError, RuntimeError, ValueError) as e:
        logger.warning(f"Question {question_id} failed: {e}")
        details = e.to_dict() if isinstance(e, SemanticLayerError) else {'message': str(e)}
        response = {
            'success': False,
            'question': question,
            **details,
        }
    except Exception as e:
        logger.error(f"Error processing question {question_id}: {e}")
        response = {
            'success': False,
            'question': question,
            'error': type(e).__name__,
            'message': str(e),
        }
    response.update({
        'question_id': question_id,
        'processing_time': time.time() - start_time,
        'timestamp': time.strftime('%Y-%m-%d %H:%M:%S'),
    })
    return response


def save_results_to_json(results: List[Dict[str, Any]], output_dir: str = "output") -> str:
    """Save each result and a combined file; returns the combined path."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    for result in results:
        filepath = os.path.join(output_dir, f"question_{result['question_id']:02d}.json")
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(result, f, indent=2, ensure_ascii=False, default=str)

    combined_filepath = os.path.join(output_dir, "all_results.json")
    with open(combined_filepath, 'w', encoding='utf-8') as f:
        json.dump({
            "batch_info": {
                "total_questions": len(results),
                "successful": sum(1 for r in results if r['success']),
                "failed": sum(1 for r in results if not r['success']),
                "timestamp": datetime.now().isoformat(),
                "total_processing_time": sum(r.get('processing_time', 0) for r in results),
            },
            "results": results,
        }, f, indent=2, ensure_ascii=False, default=str)

    logger.info(f"Saved {len(results)} result files to {output_dir}")
    return combined_filepath


@cli.command()
@click.option("--questions", "questions_file", default="questions.txt", show_default=True)
@click.option("--output", "output_dir", default="output", show_default=True)
def batch(questions_file, output_dir):
    """Answer every question in a file and save the responses as JSON."""
    if not config.validate():
        fail(RuntimeError("Configuration validation failed"), code=1)

    try:
        questions = read_questions_from_file(questions_file)
    except OSError as e:
        fail(e, code=3)
        return
    if not questions:
        fail(ValueError("No questions found in file"), code=3)

    system = get_system()
    results = []
    for i, question in enumerate(questions, 1):
        results.append(process_question(system, question, i))
        if i % 5 == 0:
            logger.info(f"Progress: {i}/{len(questions)} questions processed")

    combined = save_results_to_json(results, output_dir)
    failed = sum(1 for r in results if not r['success'])
    emit({
        "total_questions": len(results),
        "successful": len(results) - failed,
        "failed": failed,
        "output": combined,
    })


if __name__ == "__main__":
    cli()
