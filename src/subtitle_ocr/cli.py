"""Command-line interface for subtitle OCR development utilities.

Works on single raw bitmap subtitle packets (a VobSub SPU packet or a PGS
display set saved to a file), so decoding and preprocessing can be inspected
without a container demuxer.
"""

from enum import Enum
from pathlib import Path

import typer
from PIL import Image
from rich.console import Console
from rich.table import Table

from .bitmap.palette import Palette, parse_idx
from .bitmap.pgs import PgsDecoder, render_frame
from .bitmap.vobsub import decode_spu_packet
from .config import get_settings
from .errors import SubtitleOCRError
from .models import RasterImage
from .preprocess import PreprocessConfig, preprocess

app = typer.Typer(
    name="subtitle-ocr",
    help="Subtitle OCR utilities for decoding bitmap subtitles and recognizing their text",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console(stderr=True)


class PacketCodec(str, Enum):
    vobsub = "vobsub"
    pgs = "pgs"


def _decode_packet(packet: Path, codec: PacketCodec, idx: Path | None) -> RasterImage:
    data = packet.read_bytes()
    if codec is PacketCodec.pgs:
        return render_frame(PgsDecoder().feed(data))
    palette = parse_idx(idx.read_bytes()) if idx else Palette.default()
    return decode_spu_packet(data, palette).image


def _preprocess_config(upscale: float | None, crop: bool) -> PreprocessConfig:
    overrides = {"crop_to_content": crop}
    if upscale is not None:
        overrides["upscale_factor"] = upscale
    return PreprocessConfig.from_settings(get_settings(), **overrides)


PACKET_ARGUMENT = typer.Argument(
    ...,
    help="File holding one raw packet (SPU packet or PGS display set)",
    exists=True,
    dir_okay=False,
    resolve_path=True,
)
CODEC_OPTION = typer.Option(PacketCodec.vobsub, "--codec", "-c", help="Packet codec")
IDX_OPTION = typer.Option(
    None,
    "--idx",
    help="VobSub .idx file for the palette (default: grey ramp)",
    exists=True,
    dir_okay=False,
)
UPSCALE_OPTION = typer.Option(None, "--upscale", "-u", help="Upscale factor (default: from settings)")
CROP_OPTION = typer.Option(False, "--crop", help="Crop to the text bounding box")


@app.command()
def render(
    packet: Path = PACKET_ARGUMENT,
    output: Path = typer.Option(
        None,
        "--output",
        "-o",
        help="Output PNG file (default: same name as input with .png extension)",
    ),
    codec: PacketCodec = CODEC_OPTION,
    idx: Path = IDX_OPTION,
    raw: bool = typer.Option(False, "--raw", help="Save the decoded RGBA raster without preprocessing"),
    upscale: float = UPSCALE_OPTION,
    crop: bool = CROP_OPTION,
) -> None:
    """Decode one bitmap subtitle packet and save it as PNG."""
    if output is None:
        output = packet.with_suffix(".png")

    try:
        raster = _decode_packet(packet, codec, idx)
        console.print(f"Decoded {raster.width}×{raster.height} bitmap at ({raster.x}, {raster.y})")
        if raw:
            image = Image.fromarray(raster.pixels)
        else:
            image = Image.fromarray(preprocess(raster, _preprocess_config(upscale, crop)).pixels)
    except SubtitleOCRError as e:
        console.print(f"[red]Error:[/red] {e.kind}: {e.reason}")
        raise typer.Exit(1) from e

    output.parent.mkdir(parents=True, exist_ok=True)
    image.save(output)
    console.print(f"[green]✓[/green] Saved {image.width}×{image.height} image to {output}")


@app.command()
def recognize(
    packet: Path = PACKET_ARGUMENT,
    codec: PacketCodec = CODEC_OPTION,
    idx: Path = IDX_OPTION,
    backend: str = typer.Option(None, "--backend", "-b", help="Recognition backend (default: from settings)"),
    language: str = typer.Option(None, "--language", "-l", help="ISO 639-2 language (default: from settings)"),
    upscale: float = UPSCALE_OPTION,
    crop: bool = CROP_OPTION,
) -> None:
    """Decode, preprocess and recognize one bitmap subtitle packet; prints the text."""
    from .backends import get_backend
    from .recognition import RecognitionAdapter

    settings = get_settings()
    try:
        engine = get_backend(backend)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    try:
        image = preprocess(_decode_packet(packet, codec, idx), _preprocess_config(upscale, crop))
        with RecognitionAdapter.from_settings(engine, settings) as adapter:
            text, confidence = adapter.recognize(image, language)
    except SubtitleOCRError as e:
        console.print(f"[red]Error:[/red] {e.kind}: {e.reason}")
        raise typer.Exit(1) from e

    console.print(f"Backend: {engine.name or type(engine).__name__}, confidence: {confidence:.2f}")
    typer.echo(text)


@app.command("config")
def show_config() -> None:
    """Show the effective settings."""
    settings = get_settings()
    table = Table(title="subtitle-ocr settings")
    table.add_column("Group")
    table.add_column("Setting")
    table.add_column("Value")
    for group, values in settings.display().items():
        for key, value in values.items():
            table.add_row(group, key, str(value))
    Console().print(table)


if __name__ == "__main__":
    app()
